"""
Sentry error reporting for the financial core.

Only failures an operator must act on are reported: retry exhaustion,
integrity violations, lost connections and fatal database errors. Validation
failures (overpayment, insufficient balance, unknown claim) are expected
business outcomes and stay in the logs.

Events pass through ``filter_sensitive_data`` before leaving the process.
Patient identifiers are replaced by a salted SHA-256 digest so related events
still correlate without exposing the identifier.
"""
import hashlib
import os
import warnings
from typing import Any, Dict, Optional

import sentry_sdk
from pydantic import Field
from pydantic_settings import BaseSettings
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from rcm.utils.errors import AppError, ErrorKind, RetryExhaustedError
from rcm.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_SENSITIVE_KEYS = "password,token,secret,ssn,credit_card,phi,patient_name,dob"
DEFAULT_PATIENT_ID_KEYS = "patient_id,from_patient_id,to_patient_id"
SENTRY_LEVELS = ("debug", "info", "warning", "error", "fatal")


class SentrySettings(BaseSettings):
    """Sentry configuration settings."""

    dsn: Optional[str] = Field(None, alias="SENTRY_DSN")
    environment: str = Field("development", alias="SENTRY_ENVIRONMENT")
    release: Optional[str] = Field(None, alias="SENTRY_RELEASE")
    traces_sample_rate: float = Field(0.1, alias="SENTRY_TRACES_SAMPLE_RATE")
    send_default_pii: bool = Field(False, alias="SENTRY_SEND_DEFAULT_PII")  # HIPAA
    enable_before_send_filter: bool = Field(True, alias="SENTRY_ENABLE_BEFORE_SEND_FILTER")

    # Keys dropped from event context (substring match)
    sensitive_keys: str = Field(DEFAULT_SENSITIVE_KEYS, alias="SENTRY_SENSITIVE_KEYS")
    # Keys whose values are replaced by a salted digest (exact match)
    patient_id_keys: str = Field(DEFAULT_PATIENT_ID_KEYS, alias="SENTRY_PATIENT_ID_KEYS")
    phi_hash_salt: str = Field("rcm-default-salt", alias="PHI_HASH_SALT")

    enable_alerts: bool = Field(True, alias="SENTRY_ENABLE_ALERTS")
    alert_on_retry_exhaustion: bool = Field(True, alias="SENTRY_ALERT_ON_RETRY_EXHAUSTION")

    enable_tracing: bool = Field(True, alias="SENTRY_ENABLE_TRACING")
    enable_sqlalchemy_integration: bool = Field(True, alias="SENTRY_ENABLE_SQLALCHEMY_INTEGRATION")

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"
        populate_by_name = True


settings = SentrySettings()


def _split_keys(raw: str):
    return [key.strip().lower() for key in raw.split(",") if key.strip()]


def init_sentry() -> None:
    """
    Initialize the Sentry SDK.

    Call once at process start after ``.env`` is loaded (``setup_core`` does
    this). Without ``SENTRY_DSN``, or under ``TESTING=true``, nothing is sent.
    """
    if not settings.dsn:
        logger.info("Sentry DSN not configured, error tracking disabled")
        return

    if os.getenv("TESTING") == "true":
        logger.info("Skipping Sentry initialization in test environment")
        return

    if settings.environment.lower() in ("production", "prod") and settings.phi_hash_salt == "rcm-default-salt":
        logger.warning("PHI_HASH_SALT is the default value in production", environment=settings.environment)

    # Log records become breadcrumbs; failures are reported explicitly
    integrations = [LoggingIntegration(level=None, event_level=None)]
    if settings.enable_sqlalchemy_integration:
        integrations.append(SqlalchemyIntegration())

    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=UserWarning, module="urllib3")
        sentry_sdk.init(
            dsn=settings.dsn,
            environment=settings.environment,
            release=settings.release,
            traces_sample_rate=settings.traces_sample_rate if settings.enable_tracing else 0.0,
            send_default_pii=settings.send_default_pii,
            integrations=integrations,
            before_send=filter_sensitive_data if settings.enable_before_send_filter else None,
        )

    logger.info(
        "Sentry initialized",
        environment=settings.environment,
        release=settings.release,
        tracing_enabled=settings.enable_tracing,
    )


def mask_patient_identifier(value: Any) -> str:
    """Salted SHA-256 of a patient identifier, shortened to 16 hex chars."""
    normalized = str(value).strip().lower()
    digest = hashlib.sha256(f"{settings.phi_hash_salt}:{normalized}".encode("utf-8")).hexdigest()
    return f"sha256:{digest[:16]}"


def _scrub(block: Dict[str, Any], sensitive, patient_keys) -> None:
    for key in list(block.keys()):
        lowered = key.lower()
        if any(pattern in lowered for pattern in sensitive):
            block.pop(key)
        elif lowered in patient_keys and block[key] is not None:
            block[key] = mask_patient_identifier(block[key])


def filter_sensitive_data(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    ``before_send`` hook.

    User context is reduced to id and username. In ``extra``, every context
    block and breadcrumb data, keys matching ``SENTRY_SENSITIVE_KEYS`` are
    removed and patient identifiers are masked.
    """
    sensitive = _split_keys(settings.sensitive_keys)
    patient_keys = set(_split_keys(settings.patient_id_keys))

    if "user" in event:
        event["user"] = {
            "id": event["user"].get("id"),
            "username": event["user"].get("username"),
        }

    if "extra" in event:
        _scrub(event["extra"], sensitive, patient_keys)

    for block in event.get("contexts", {}).values():
        if isinstance(block, dict):
            _scrub(block, sensitive, patient_keys)

    breadcrumbs = event.get("breadcrumbs", {})
    for crumb in breadcrumbs.get("values", []) if isinstance(breadcrumbs, dict) else breadcrumbs:
        if isinstance(crumb.get("data"), dict):
            _scrub(crumb["data"], sensitive, patient_keys)

    return event


def _configure_sentry_scope(scope, context=None, user=None, tags=None) -> None:
    for key, value in (context or {}).items():
        scope.set_context(key, value if isinstance(value, dict) else {"value": value})
    if user:
        scope.user = user
    for key, value in (tags or {}).items():
        scope.set_tag(key, value)


def capture_exception(
    exception: Exception,
    level: str = "error",
    context: Optional[Dict[str, Any]] = None,
    user: Optional[Dict[str, Any]] = None,
    tags: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """
    Capture an exception with context blocks and tags in an isolated scope.

    Returns:
        Event ID if Sentry is configured, None otherwise
    """
    with sentry_sdk.new_scope() as scope:
        _configure_sentry_scope(scope, context, user, tags)
        scope.set_level(level)
        return sentry_sdk.capture_exception(exception)


def capture_message(
    message: str,
    level: str = "info",
    context: Optional[Dict[str, Any]] = None,
    tags: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """Capture a message; unknown levels fall back to ``info``."""
    level = level.lower()
    with sentry_sdk.new_scope() as scope:
        _configure_sentry_scope(scope, context, None, tags)
        return sentry_sdk.capture_message(message, level=level if level in SENTRY_LEVELS else "info")


def should_alert(error: AppError) -> bool:
    """Whether a failed operation is reported, given the alert settings."""
    if error.kind == ErrorKind.VALIDATION or not settings.enable_alerts:
        return False
    if isinstance(error, RetryExhaustedError):
        return settings.alert_on_retry_exhaustion
    return True


def report_operation_failure(operation: str, error: AppError, context: Dict[str, Any]) -> Optional[str]:
    """
    Report a failed financial operation when ``should_alert`` allows it.

    Tags carry the operation and error code so alerts can be routed on them.
    """
    if not should_alert(error):
        return None
    return capture_exception(
        error,
        context={"operation": {"name": operation, **context}, "error": error.to_dict()},
        tags={"operation": operation, "error_code": error.code},
    )


def add_breadcrumb(
    message: str,
    category: str = "default",
    level: str = "info",
    data: Optional[Dict[str, Any]] = None,
) -> None:
    """Record a breadcrumb; SDK failures are logged, never raised."""
    try:
        sentry_sdk.add_breadcrumb(message=message, category=category, level=level, data=data or {})
    except Exception as e:
        logger.error("Failed to add breadcrumb to Sentry", error=str(e))
