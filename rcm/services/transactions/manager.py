"""
Connection and transaction management.

``ConnectionManager.begin()`` checks one connection out of the engine pool and
opens one transaction on it, returning a ``TransactionHandle``. The handle is
the only way services touch the database: it is passed explicitly to every
collaborator of a logical operation, so there is no process-wide registry of
open transactions.

Lifecycle of a handle::

    handle = manager.begin(operation="post_payment")
    try:
        ...  # handle.execute / handle.get / handle.add
        handle.commit()
    except Exception:
        handle.rollback()
        raise
    finally:
        handle.release()

``release()`` always runs once and returns the connection to the pool.
"""
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import Engine
from sqlalchemy import exc as sa_exc
from sqlalchemy.orm import Session

from rcm.config.transactions import get_lock_strategy, get_lock_timeout_seconds
from rcm.services.transactions.classification import translate_database_error
from rcm.services.transactions.locks import LockStrategy, select_lock_strategy
from rcm.utils.errors import DatabaseConnectionError, FatalDatabaseError
from rcm.utils.logger import get_logger

logger = get_logger(__name__)


class TransactionHandle:
    """
    One pooled connection plus its open transaction.

    Driver errors raised by ``execute``, ``flush``, ``commit`` and the savepoint
    operations are translated into ``AppError`` subclasses here.
    """

    def __init__(
        self,
        connection,
        lock_strategy: LockStrategy,
        lock_timeout_seconds: float,
        operation: Optional[str] = None,
    ):
        self.connection = connection
        self.operation = operation
        self.lock_strategy = lock_strategy
        self.lock_timeout_seconds = lock_timeout_seconds
        self.session: Optional[Session] = None
        self.held_locks: List[str] = []
        self._transaction = None
        self._savepoints: Dict[str, Any] = {}
        self._savepoint_counter = 0
        self._released = False
        self._started_at: Optional[float] = None

    @property
    def dialect_name(self) -> str:
        return self.connection.dialect.name

    @property
    def is_active(self) -> bool:
        return self._transaction is not None and self._transaction.is_active

    @property
    def is_released(self) -> bool:
        return self._released

    def begin(self) -> None:
        """Open the transaction and bind an ORM session to it."""
        try:
            self._transaction = self.connection.begin()
        except sa_exc.SQLAlchemyError as exc:
            raise translate_database_error(exc) from exc
        self.session = Session(bind=self.connection, autoflush=False, expire_on_commit=False)
        self._started_at = time.monotonic()
        logger.debug("Transaction started", operation=self.operation)

    def _require_active(self) -> Session:
        if not self.is_active or self.session is None:
            raise FatalDatabaseError("Transaction is not active", details={"operation": self.operation})
        return self.session

    def execute(self, statement, params: Optional[dict] = None):
        """Execute a Core or ORM statement inside the transaction."""
        session = self._require_active()
        try:
            return session.execute(statement, params or {})
        except sa_exc.SQLAlchemyError as exc:
            raise translate_database_error(exc) from exc

    def get(self, model, ident, for_update: bool = False):
        """
        Load a row by primary key.

        With ``for_update`` the row is read with ``SELECT ... FOR UPDATE`` and
        any stale identity-map state is overwritten.
        """
        session = self._require_active()
        try:
            return session.get(
                model,
                ident,
                with_for_update=True if for_update else None,
                populate_existing=for_update,
            )
        except sa_exc.SQLAlchemyError as exc:
            raise translate_database_error(exc) from exc

    def add(self, obj) -> None:
        self._require_active().add(obj)

    def flush(self) -> None:
        session = self._require_active()
        try:
            session.flush()
        except sa_exc.SQLAlchemyError as exc:
            raise translate_database_error(exc) from exc

    def acquire_lock(self, key: str, timeout_seconds: Optional[float] = None) -> None:
        """
        Take a transaction-scoped named lock.

        Raises:
            LockTimeoutError: If the lock is not granted within the timeout
        """
        self._require_active()
        if key in self.held_locks:
            return
        timeout = timeout_seconds if timeout_seconds is not None else self.lock_timeout_seconds
        self.lock_strategy.acquire(self, key, timeout)
        self.held_locks.append(key)
        logger.debug("Named lock acquired", key=key, strategy=self.lock_strategy.name, operation=self.operation)

    def next_savepoint_name(self, prefix: str = "sp") -> str:
        self._savepoint_counter += 1
        return f"{prefix}_{self._savepoint_counter}"

    def savepoint(self, name: str) -> None:
        """Mark a point that can be rolled back to without ending the transaction."""
        session = self._require_active()
        if name in self._savepoints:
            raise FatalDatabaseError(f"Savepoint {name} already exists", details={"savepoint": name})
        try:
            self._savepoints[name] = session.begin_nested()
        except sa_exc.SQLAlchemyError as exc:
            raise translate_database_error(exc) from exc

    def rollback_to(self, name: str) -> None:
        """Undo everything since ``savepoint(name)`` and discard the savepoint."""
        nested = self._pop_savepoint(name)
        try:
            nested.rollback()
        except sa_exc.SQLAlchemyError as exc:
            raise translate_database_error(exc) from exc
        logger.debug("Rolled back to savepoint", savepoint=name, operation=self.operation)

    def release_savepoint(self, name: str) -> None:
        """Keep the work done since ``savepoint(name)`` and discard the savepoint."""
        nested = self._pop_savepoint(name)
        try:
            nested.commit()
        except sa_exc.SQLAlchemyError as exc:
            raise translate_database_error(exc) from exc

    def _pop_savepoint(self, name: str):
        self._require_active()
        try:
            return self._savepoints.pop(name)
        except KeyError:
            raise FatalDatabaseError(f"Unknown savepoint {name}", details={"savepoint": name}) from None

    def commit(self) -> None:
        """Flush pending ORM changes and commit the transaction."""
        session = self._require_active()
        try:
            session.flush()
            self._transaction.commit()
        except sa_exc.SQLAlchemyError as exc:
            raise translate_database_error(exc) from exc
        self._savepoints.clear()
        logger.debug("Transaction committed", operation=self.operation, duration_ms=self._elapsed_ms())

    def rollback(self) -> None:
        """
        Roll back the transaction.

        A failing rollback is logged and swallowed so the caller's original
        error is the one that surfaces.
        """
        if self._transaction is None or not self._transaction.is_active:
            return
        try:
            self._transaction.rollback()
            logger.debug("Transaction rolled back", operation=self.operation, duration_ms=self._elapsed_ms())
        except sa_exc.SQLAlchemyError as exc:
            logger.error("Rollback failed", operation=self.operation, error=str(exc))
        finally:
            self._savepoints.clear()

    def release(self) -> None:
        """Release named locks, close the session and return the connection to the pool. Idempotent."""
        if self._released:
            return
        self._released = True
        try:
            if self.held_locks:
                self.lock_strategy.release_all(self, list(self.held_locks))
        except Exception as exc:
            logger.error("Failed to release named locks", operation=self.operation, keys=self.held_locks, error=str(exc))
        finally:
            self.held_locks = []
            if self.session is not None:
                self.session.close()
            try:
                self.connection.close()
            except sa_exc.SQLAlchemyError as exc:
                logger.error("Failed to return connection to pool", operation=self.operation, error=str(exc))

    def _elapsed_ms(self) -> Optional[float]:
        if self._started_at is None:
            return None
        return round((time.monotonic() - self._started_at) * 1000, 2)


class ConnectionManager:
    """
    Hands out transaction handles backed by the engine's connection pool.

    Args:
        engine: SQLAlchemy engine owning the pool
        lock_strategy: Named-lock backend; defaults to the configured or dialect default
        lock_timeout_seconds: Default named-lock timeout
    """

    def __init__(
        self,
        engine: Engine,
        lock_strategy: Optional[LockStrategy] = None,
        lock_timeout_seconds: Optional[float] = None,
    ):
        self.engine = engine
        self.lock_strategy = lock_strategy or select_lock_strategy(engine.dialect.name, get_lock_strategy())
        self.lock_timeout_seconds = (
            lock_timeout_seconds if lock_timeout_seconds is not None else get_lock_timeout_seconds()
        )

    def begin(self, operation: Optional[str] = None) -> TransactionHandle:
        """
        Check out a connection and open a transaction on it.

        Raises:
            DatabaseConnectionError: If no connection can be obtained (no BEGIN is issued)
            TransientError: If the database refuses to start the transaction because it is busy
        """
        try:
            connection = self.engine.connect()
        except sa_exc.TimeoutError as exc:
            logger.error("Connection pool exhausted", operation=operation, pool_status=self.engine.pool.status())
            raise DatabaseConnectionError(details={"operation": operation, "reason": "pool_exhausted"}) from exc
        except sa_exc.SQLAlchemyError as exc:
            logger.error("Failed to get database connection", operation=operation, error=str(exc))
            raise DatabaseConnectionError(details={"operation": operation, "reason": type(exc).__name__}) from exc

        handle = TransactionHandle(
            connection,
            lock_strategy=self.lock_strategy,
            lock_timeout_seconds=self.lock_timeout_seconds,
            operation=operation,
        )
        try:
            handle.begin()
        except Exception:
            handle.release()
            raise
        return handle

    @contextmanager
    def transaction(self, operation: Optional[str] = None) -> Iterator[TransactionHandle]:
        """Run a block in one transaction: commit on success, rollback on error, always release."""
        handle = self.begin(operation=operation)
        try:
            yield handle
            handle.commit()
        except BaseException:
            handle.rollback()
            raise
        finally:
            handle.release()
