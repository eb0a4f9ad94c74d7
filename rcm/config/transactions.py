"""Transaction, retry and named-lock settings.

Values come from the environment (or ``.env``) and are read once at import.
Services accept explicit overrides so tests never need to patch the
environment.
"""
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

LOCK_STRATEGIES = {"auto", "advisory", "get_lock", "table"}


class TransactionSettings(BaseSettings):
    """Retry and locking behaviour of the financial core."""

    max_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=20,
        alias="RCM_MAX_RETRY_ATTEMPTS",
        description="Attempts per logical operation before MAX_RETRIES_EXCEEDED.",
    )
    retry_backoff_seconds: str = Field(
        default="0.1,0.2,0.4",
        alias="RCM_RETRY_BACKOFF_SECONDS",
        description="Comma-separated sleep intervals between attempts. The last one repeats.",
    )
    lock_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=300,
        alias="RCM_LOCK_TIMEOUT_SECONDS",
        description="Upper bound on waiting for a patient-account named lock.",
    )
    lock_strategy: str = Field(
        default="auto",
        alias="RCM_LOCK_STRATEGY",
        description="Named-lock backend: auto (by dialect), advisory, get_lock or table.",
    )

    @field_validator("retry_backoff_seconds")
    @classmethod
    def validate_backoff(cls, v: str) -> str:
        """Every interval must be a non-negative number."""
        for part in v.split(","):
            part = part.strip()
            if not part:
                continue
            if float(part) < 0:
                raise ValueError(f"Backoff interval must be >= 0, got {part}")
        return v

    @field_validator("lock_strategy")
    @classmethod
    def validate_lock_strategy(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in LOCK_STRATEGIES:
            raise ValueError(
                f"Lock strategy '{v}' is not supported. "
                f"Supported strategies: {', '.join(sorted(LOCK_STRATEGIES))}"
            )
        return v

    @property
    def backoff_schedule(self) -> List[float]:
        return [float(part) for part in self.retry_backoff_seconds.split(",") if part.strip()]

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"
        populate_by_name = True


settings = TransactionSettings()


def get_max_retry_attempts() -> int:
    """Get the configured attempt budget."""
    return settings.max_retry_attempts


def get_backoff_schedule() -> List[float]:
    """Get the configured backoff intervals in seconds."""
    return settings.backoff_schedule


def get_lock_timeout_seconds() -> float:
    """Get the named-lock acquisition timeout."""
    return settings.lock_timeout_seconds


def get_lock_strategy() -> str:
    """Get the configured named-lock backend name."""
    return settings.lock_strategy
