"""
Whole-transaction retry for transient database failures.

Each attempt gets a brand-new transaction. A transient failure (deadlock, lock
timeout) rolls the attempt back, releases its connection, sleeps for the next
backoff interval and starts over. Any other failure is rolled back, released
and re-raised immediately.
"""
import time
from typing import Callable, List, Optional, Sequence, TypeVar

from rcm.config.transactions import get_backoff_schedule, get_max_retry_attempts
from rcm.services.transactions.manager import ConnectionManager, TransactionHandle
from rcm.utils.errors import RetryExhaustedError, TransientError
from rcm.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def backoff_delay(schedule: Sequence[float], attempt: int) -> float:
    """Delay after failed ``attempt`` (1-based); the last interval repeats."""
    if not schedule:
        return 0.0
    return schedule[min(attempt - 1, len(schedule) - 1)]


class RetryCoordinator:
    """
    Runs a unit of work inside a transaction, retrying transient failures.

    Args:
        connection_manager: Source of transaction handles
        max_attempts: Default attempt budget (RCM_MAX_RETRY_ATTEMPTS)
        backoff_schedule: Default sleep intervals in seconds (RCM_RETRY_BACKOFF_SECONDS)
        sleep: Sleep function, injectable for tests
    """

    def __init__(
        self,
        connection_manager: ConnectionManager,
        max_attempts: Optional[int] = None,
        backoff_schedule: Optional[Sequence[float]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.connection_manager = connection_manager
        self.max_attempts = max_attempts or get_max_retry_attempts()
        self.backoff_schedule: List[float] = list(
            backoff_schedule if backoff_schedule is not None else get_backoff_schedule()
        )
        self._sleep = sleep

    def run(
        self,
        unit_of_work: Callable[[TransactionHandle], T],
        operation: str,
        max_attempts: Optional[int] = None,
        backoff_schedule: Optional[Sequence[float]] = None,
    ) -> T:
        """
        Execute ``unit_of_work(handle)`` and commit, retrying on ``TransientError``.

        Raises:
            RetryExhaustedError: After ``max_attempts`` consecutive transient failures
            AppError: Any non-transient failure, unchanged
        """
        attempts = max_attempts or self.max_attempts
        schedule = list(backoff_schedule) if backoff_schedule is not None else self.backoff_schedule
        last_error: Optional[TransientError] = None

        for attempt in range(1, attempts + 1):
            started = time.monotonic()
            try:
                handle = self.connection_manager.begin(operation=operation)
            except TransientError as exc:
                last_error = exc
                self._log_transient(operation, attempt, attempts, exc, started)
                self._pause(schedule, attempt, attempts)
                continue

            try:
                result = unit_of_work(handle)
                handle.commit()
                logger.info(
                    "Transaction committed",
                    operation=operation,
                    attempt=attempt,
                    duration_ms=_elapsed_ms(started),
                )
                return result
            except TransientError as exc:
                handle.rollback()
                last_error = exc
            except BaseException as exc:
                handle.rollback()
                logger.warning(
                    "Transaction failed",
                    operation=operation,
                    attempt=attempt,
                    error_type=type(exc).__name__,
                    error=str(exc),
                    duration_ms=_elapsed_ms(started),
                )
                raise
            finally:
                handle.release()

            self._log_transient(operation, attempt, attempts, last_error, started)
            self._pause(schedule, attempt, attempts)

        logger.error("Maximum retry attempts exceeded", operation=operation, attempts=attempts)
        raise RetryExhaustedError(operation=operation, attempts=attempts, last_error=last_error)

    def _pause(self, schedule: Sequence[float], attempt: int, attempts: int) -> None:
        if attempt < attempts:
            delay = backoff_delay(schedule, attempt)
            if delay > 0:
                self._sleep(delay)

    @staticmethod
    def _log_transient(operation, attempt, attempts, exc, started) -> None:
        logger.warning(
            "Transient failure, retrying" if attempt < attempts else "Transient failure on final attempt",
            operation=operation,
            attempt=attempt,
            max_attempts=attempts,
            code=exc.code,
            error=exc.message,
            duration_ms=_elapsed_ms(started),
        )


def _elapsed_ms(started: float) -> float:
    return round((time.monotonic() - started) * 1000, 2)


def run_in_transaction(
    connection_manager: ConnectionManager,
    unit_of_work: Callable[[TransactionHandle], T],
    operation: str,
    max_attempts: Optional[int] = None,
    backoff_schedule: Optional[Sequence[float]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``unit_of_work`` once-per-attempt in a fresh transaction. See ``RetryCoordinator.run``."""
    coordinator = RetryCoordinator(
        connection_manager,
        max_attempts=max_attempts,
        backoff_schedule=backoff_schedule,
        sleep=sleep,
    )
    return coordinator.run(unit_of_work, operation)
