"""
Error taxonomy for the financial processing core.

Every failure surfaced by the core is an ``AppError`` carrying a stable
``code``, a user-facing ``message``, optional ``details`` and an ``ErrorKind``.
Retry and rollback decisions are made on ``kind`` alone:

- TRANSIENT: deadlocks and engine lock-wait timeouts. Retried as a whole
  transaction.
- LOCK_CONTENTION: named locks on patient accounts not granted in time. The
  operation is aborted and rolled back without a retry.
- VALIDATION: business-rule rejections (overpayment, insufficient balance,
  unknown claim/patient). Never retried.
- INTEGRITY: referential/unique constraint violations. Never retried.
- CONNECTION: pool exhaustion or unreachable database. Raised before any
  transaction is opened.
- FATAL: anything else at the infrastructure level (lost connection mid
  transaction, unexpected driver failure).
"""
import enum
from decimal import Decimal
from typing import Any, Optional


class ErrorKind(str, enum.Enum):
    """Closed classification of failures."""

    TRANSIENT = "transient"
    VALIDATION = "validation"
    INTEGRITY = "integrity"
    CONNECTION = "connection"
    LOCK_CONTENTION = "lock_contention"
    FATAL = "fatal"


class AppError(Exception):
    """Base application error."""

    kind = ErrorKind.FATAL

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        self.message = message
        self.code = code or "APP_ERROR"
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Serializable view used by the operation result."""
        return {
            "code": self.code,
            "message": self.message,
            "kind": self.kind.value,
            "details": _jsonable(self.details),
        }


class ValidationError(AppError):
    """Business validation failure."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, details: Optional[dict] = None, code: str = "VALIDATION_ERROR"):
        super().__init__(message=message, code=code, details=details or {})


class NotFoundError(ValidationError):
    """Resource not found error."""

    def __init__(self, resource: str, identifier: Optional[Any] = None):
        message = f"{resource} not found"
        if identifier is not None:
            message += f" (id: {identifier})"
        super().__init__(
            message=message,
            code="NOT_FOUND",
            details={"resource": resource, "identifier": identifier},
        )


class OverpaymentError(ValidationError):
    """Payment would push a claim's paid amount past its total."""

    def __init__(self, claim_id: Any, amount: Decimal, paid_amount: Decimal, total_amount: Decimal):
        super().__init__(
            message="Payment amount exceeds claim amount",
            code="OVERPAYMENT",
            details={
                "claim_id": claim_id,
                "amount": amount,
                "paid_amount": paid_amount,
                "total_amount": total_amount,
            },
        )


class InsufficientBalanceError(ValidationError):
    """Transfer amount is larger than the source account balance."""

    def __init__(self, patient_id: Any, available: Decimal, requested: Decimal):
        super().__init__(
            message=f"Insufficient balance. Available: {available}, Requested: {requested}",
            code="INSUFFICIENT_BALANCE",
            details={"patient_id": patient_id, "available": available, "requested": requested},
        )


class PaymentAlreadyReversedError(ValidationError):
    """Payment has already been reversed."""

    def __init__(self, payment_id: Any):
        super().__init__(
            message="Payment already reversed",
            code="PAYMENT_ALREADY_REVERSED",
            details={"payment_id": payment_id},
        )


class ERAParseError(ValidationError):
    """Remittance text could not be parsed into line items."""

    def __init__(self, message: str, line_number: Optional[int] = None):
        details = {"line_number": line_number} if line_number is not None else {}
        super().__init__(message=message, code="ERA_PARSE_ERROR", details=details)


class TransientError(AppError):
    """Error expected to succeed if the whole transaction is retried."""

    kind = ErrorKind.TRANSIENT

    def __init__(self, message: str, code: str = "TRANSIENT_ERROR", details: Optional[dict] = None):
        super().__init__(message=message, code=code, details=details)


class DeadlockError(TransientError):
    """Deadlock detected by the database engine."""

    def __init__(self, message: str = "Deadlock detected", details: Optional[dict] = None):
        super().__init__(message=message, code="DEADLOCK", details=details)


class LockTimeoutError(TransientError):
    """A row or named lock could not be acquired within its timeout."""

    def __init__(self, message: str = "Lock wait timeout exceeded", code: str = "LOCK_TIMEOUT", details: Optional[dict] = None):
        super().__init__(message=message, code=code, details=details)


class LockAcquisitionError(AppError):
    """Named locks on patient accounts could not be acquired. Not retried."""

    kind = ErrorKind.LOCK_CONTENTION

    def __init__(self, keys: list, details: Optional[dict] = None):
        super().__init__(
            message="Failed to acquire locks on patient accounts",
            code="LOCK_ACQUISITION_FAILED",
            details={"keys": keys, **(details or {})},
        )


class DataIntegrityError(AppError):
    """Referential or unique constraint violation."""

    kind = ErrorKind.INTEGRITY

    def __init__(self, message: str = "Data integrity violation", details: Optional[dict] = None):
        super().__init__(message=message, code="INTEGRITY_ERROR", details=details)


class DatabaseConnectionError(AppError):
    """No pooled connection could be obtained."""

    kind = ErrorKind.CONNECTION

    def __init__(self, message: str = "Failed to get database connection", details: Optional[dict] = None):
        super().__init__(message=message, code="CONNECTION_ERROR", details=details)


class FatalDatabaseError(AppError):
    """Infrastructure failure that must abort the whole transaction."""

    kind = ErrorKind.FATAL

    def __init__(self, message: str = "Database error", details: Optional[dict] = None):
        super().__init__(message=message, code="DATABASE_ERROR", details=details)


class RetryExhaustedError(AppError):
    """Terminal failure after the configured number of transient failures."""

    kind = ErrorKind.TRANSIENT

    def __init__(self, operation: str, attempts: int, last_error: Optional[AppError] = None):
        details = {"operation": operation, "attempts": attempts}
        if last_error is not None:
            details["last_error"] = {"code": last_error.code, "message": last_error.message}
        super().__init__(
            message="Maximum retry attempts exceeded",
            code="MAX_RETRIES_EXCEEDED",
            details=details,
        )
        self.last_error = last_error


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value
