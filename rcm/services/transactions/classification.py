"""
Database error classification.

Driver exceptions are mapped to an ``ErrorKind`` exactly once, where they leave
SQLAlchemy (``TransactionHandle``). Everything above that boundary decides on
the kind alone.

Driver codes:
- PostgreSQL SQLSTATE: 40P01 deadlock, 40001 serialization failure,
  55P03 lock not available, 57014 statement/lock timeout
- MySQL: 1213 deadlock, 1205 lock wait timeout
- SQLite: "database is locked" / "database table is locked" / busy
"""
from typing import Optional, Union

from sqlalchemy import exc as sa_exc

from rcm.utils.errors import (
    AppError,
    DatabaseConnectionError,
    DataIntegrityError,
    DeadlockError,
    ErrorKind,
    FatalDatabaseError,
    LockTimeoutError,
)

POSTGRES_DEADLOCK_CODES = {"40P01", "40001"}
POSTGRES_LOCK_TIMEOUT_CODES = {"55P03", "57014"}
MYSQL_DEADLOCK_CODES = {1213}
MYSQL_LOCK_TIMEOUT_CODES = {1205}
SQLITE_BUSY_MESSAGES = ("database is locked", "database table is locked", "database is busy")

DEADLOCK_CODES = POSTGRES_DEADLOCK_CODES | {str(code) for code in MYSQL_DEADLOCK_CODES}


def driver_error_code(exc: BaseException) -> Optional[Union[str, int]]:
    """
    Extract the driver-level error code from a SQLAlchemy DBAPI error.

    psycopg2 exposes ``pgcode``, psycopg 3 ``sqlstate``; MySQL drivers put the
    numeric code in ``args[0]``.
    """
    orig = getattr(exc, "orig", None)
    if orig is None:
        return None
    for attr in ("pgcode", "sqlstate"):
        code = getattr(orig, attr, None)
        if code:
            return code
    args = getattr(orig, "args", None)
    if args and isinstance(args[0], int):
        return args[0]
    return None


def _is_sqlite_busy(exc: BaseException) -> bool:
    if not isinstance(exc, sa_exc.OperationalError):
        return False
    message = str(getattr(exc, "orig", exc)).lower()
    return any(fragment in message for fragment in SQLITE_BUSY_MESSAGES)


def classify_database_error(exc: BaseException) -> ErrorKind:
    """Map a database exception to its ``ErrorKind``."""
    if isinstance(exc, AppError):
        return exc.kind

    # Pool checkout timed out: the pool is exhausted
    if isinstance(exc, sa_exc.TimeoutError):
        return ErrorKind.CONNECTION

    if isinstance(exc, sa_exc.DisconnectionError):
        return ErrorKind.FATAL
    if isinstance(exc, sa_exc.DBAPIError) and exc.connection_invalidated:
        return ErrorKind.FATAL

    if isinstance(exc, sa_exc.IntegrityError):
        return ErrorKind.INTEGRITY

    code = driver_error_code(exc)
    if code in POSTGRES_DEADLOCK_CODES or code in POSTGRES_LOCK_TIMEOUT_CODES:
        return ErrorKind.TRANSIENT
    if code in MYSQL_DEADLOCK_CODES or code in MYSQL_LOCK_TIMEOUT_CODES:
        return ErrorKind.TRANSIENT
    if _is_sqlite_busy(exc):
        return ErrorKind.TRANSIENT

    return ErrorKind.FATAL


def translate_database_error(exc: BaseException) -> AppError:
    """
    Convert a database exception into the application error taxonomy.

    ``AppError`` instances pass through unchanged.
    """
    if isinstance(exc, AppError):
        return exc

    kind = classify_database_error(exc)
    code = driver_error_code(exc)
    details = {"driver_code": str(code)} if code is not None else {}
    details["error_type"] = type(exc).__name__

    if kind == ErrorKind.TRANSIENT:
        if code is not None and str(code) in DEADLOCK_CODES:
            return DeadlockError(details=details)
        return LockTimeoutError(details=details)
    if kind == ErrorKind.INTEGRITY:
        return DataIntegrityError(details=details)
    if kind == ErrorKind.CONNECTION:
        return DatabaseConnectionError(details=details)
    return FatalDatabaseError(details=details)
