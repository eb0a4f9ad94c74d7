"""
Status and type enumerations for database models.

Claim statuses keep the numeric codes used by the billing front end
(0 = draft ... 4 = appealed); the remaining enums are string enums for JSON
serialization.
"""
import enum


class ClaimStatus(int, enum.Enum):
    """Claim status enumeration."""

    DRAFT = 0
    SUBMITTED = 1  # open
    PAID = 2
    DENIED = 3
    APPEALED = 4  # under appeal
    PARTIALLY_PAID = 5

    @classmethod
    def parse(cls, value) -> "ClaimStatus":
        """Accept a member, its numeric code or its name (case-insensitive)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str) and not value.strip().isdigit():
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise ValueError(f"Unknown claim status: {value!r}") from None
        return cls(int(value))


class PaymentStatus(str, enum.Enum):
    """Payment status enumeration."""

    POSTED = "posted"
    REVERSED = "reversed"


class TransferStatus(str, enum.Enum):
    """Balance transfer status enumeration."""

    COMPLETED = "completed"


class ERAFileStatus(str, enum.Enum):
    """ERA file processing status enumeration."""

    PROCESSED = "processed"
    AUTO_POSTED = "auto_posted"


class ERALineStatus(str, enum.Enum):
    """ERA payment detail status enumeration."""

    PENDING = "pending"
    AUTO_POSTED = "auto_posted"


class AuditAction(str, enum.Enum):
    """Audit log action enumeration."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    BATCH_PROCESS = "BATCH_PROCESS"
