"""
Named-lock backends.

A named lock serializes work on a business key (for example one patient
account) across connections for the life of a transaction. Backends:

- ``AdvisoryLockStrategy`` (PostgreSQL): ``pg_advisory_xact_lock`` bounded by
  ``SET LOCAL lock_timeout``; released by the database at commit/rollback.
- ``GetLockStrategy`` (MySQL/MariaDB): ``GET_LOCK(name, timeout)``. These locks
  are connection-scoped, so they are released explicitly when the handle is
  released.
- ``TableLockStrategy`` (portable): one row per name in ``named_locks``,
  inserted if missing and then locked with ``SELECT ... FOR UPDATE``.
"""
from typing import TYPE_CHECKING, List

from sqlalchemy import insert, select, text

from rcm.models.core import NamedLock
from rcm.utils.errors import DataIntegrityError, FatalDatabaseError, LockTimeoutError
from rcm.utils.logger import get_logger

if TYPE_CHECKING:
    from rcm.services.transactions.manager import TransactionHandle

logger = get_logger(__name__)


class LockStrategy:
    """Base class for named-lock backends."""

    name = "base"

    def acquire(self, handle: "TransactionHandle", key: str, timeout_seconds: float) -> None:
        raise NotImplementedError

    def release_all(self, handle: "TransactionHandle", keys: List[str]) -> None:
        """Release connection-scoped locks. Transaction-scoped backends need nothing."""
        return None


def _timeout_ms(timeout_seconds: float) -> int:
    return max(1, int(timeout_seconds * 1000))


class AdvisoryLockStrategy(LockStrategy):
    """PostgreSQL transaction-scoped advisory locks."""

    name = "advisory"

    def acquire(self, handle, key, timeout_seconds):
        # SET does not accept bind parameters; the value is an int
        handle.execute(text(f"SET LOCAL lock_timeout = '{_timeout_ms(timeout_seconds)}ms'"))
        try:
            handle.execute(text("SELECT pg_advisory_xact_lock(hashtext(:key))"), {"key": key})
        except LockTimeoutError as exc:
            raise LockTimeoutError(
                message=f"Timed out waiting for lock {key}",
                details={"key": key, "timeout_seconds": timeout_seconds, **exc.details},
            ) from exc
        handle.execute(text("SET LOCAL lock_timeout TO DEFAULT"))


class GetLockStrategy(LockStrategy):
    """MySQL ``GET_LOCK`` named locks."""

    name = "get_lock"

    def acquire(self, handle, key, timeout_seconds):
        granted = handle.execute(
            text("SELECT GET_LOCK(:key, :timeout)"),
            {"key": key, "timeout": max(0, int(round(timeout_seconds)))},
        ).scalar()
        if granted == 1:
            return
        if granted == 0:
            raise LockTimeoutError(
                message=f"Timed out waiting for lock {key}",
                details={"key": key, "timeout_seconds": timeout_seconds},
            )
        raise FatalDatabaseError(f"GET_LOCK failed for {key}", details={"key": key})

    def release_all(self, handle, keys):
        for key in keys:
            handle.connection.execute(text("SELECT RELEASE_LOCK(:key)"), {"key": key})
        logger.debug("Named locks released", keys=keys)


class TableLockStrategy(LockStrategy):
    """
    Portable lock table.

    The insert runs inside a savepoint so a concurrent insert of the same name
    (unique violation) does not abort the surrounding transaction.
    """

    name = "table"

    def acquire(self, handle, key, timeout_seconds):
        if handle.dialect_name == "postgresql":
            handle.execute(text(f"SET LOCAL lock_timeout = '{_timeout_ms(timeout_seconds)}ms'"))

        exists = handle.execute(select(NamedLock.name).where(NamedLock.name == key)).scalar_one_or_none()
        if exists is None:
            savepoint = handle.next_savepoint_name("named_lock")
            handle.savepoint(savepoint)
            try:
                handle.execute(insert(NamedLock).values(name=key))
            except DataIntegrityError:
                handle.rollback_to(savepoint)
            else:
                handle.release_savepoint(savepoint)

        try:
            handle.execute(select(NamedLock.name).where(NamedLock.name == key).with_for_update()).scalar_one()
        except LockTimeoutError as exc:
            raise LockTimeoutError(
                message=f"Timed out waiting for lock {key}",
                details={"key": key, "timeout_seconds": timeout_seconds, **exc.details},
            ) from exc

        if handle.dialect_name == "postgresql":
            handle.execute(text("SET LOCAL lock_timeout TO DEFAULT"))


LOCK_STRATEGY_CLASSES = {
    "advisory": AdvisoryLockStrategy,
    "get_lock": GetLockStrategy,
    "table": TableLockStrategy,
}


def select_lock_strategy(dialect_name: str, configured: str = "auto") -> LockStrategy:
    """
    Pick a named-lock backend.

    ``auto`` uses advisory locks on PostgreSQL, ``GET_LOCK`` on MySQL/MariaDB and
    the lock table everywhere else.
    """
    if configured and configured != "auto":
        return LOCK_STRATEGY_CLASSES[configured]()
    if dialect_name == "postgresql":
        return AdvisoryLockStrategy()
    if dialect_name in ("mysql", "mariadb"):
        return GetLockStrategy()
    return TableLockStrategy()
