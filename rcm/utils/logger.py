"""
Structured logging for the financial core.

Every service logs through ``get_logger(__name__)``. Monetary values are
``Decimal`` and statuses are enums, so a processor renders them as plain JSON
values before the renderer runs. ``bind_operation`` tags every line logged
inside one facade call (retries included) with the operation name.
"""
import logging
import os
import sys
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterator, Optional

import structlog
from structlog.stdlib import LoggerFactory

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 10


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.name
    if isinstance(value, date):
        return value.isoformat()
    return value


def render_financial_values(logger: Any, method_name: str, event_dict: dict) -> dict:
    """structlog processor: Decimal -> str, enum -> name, date -> ISO string."""
    for key, value in event_dict.items():
        if isinstance(value, (list, tuple)):
            event_dict[key] = [_plain(v) for v in value]
        else:
            event_dict[key] = _plain(value)
    return event_dict


def _stdout_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    return handler


def configure_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[str] = None,
    log_dir: str = "logs",
) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_format: "json" for production, "console" for local development
        log_file: Rotating log file name under ``log_dir``; stdout only when None
        log_dir: Directory for the log file, created on demand
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        render_financial_values,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    level = getattr(logging, log_level.upper())
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = []

    if not log_file:
        root_logger.addHandler(_stdout_handler(level))
        return

    log_path = Path(log_dir)
    log_path.mkdir(exist_ok=True)
    file_handler = RotatingFileHandler(
        log_path / log_file,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUPS,
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(file_handler)

    if os.getenv("ENVIRONMENT", "development") == "development":
        root_logger.addHandler(_stdout_handler(level))


@contextmanager
def bind_operation(operation: str, **context: Any) -> Iterator[None]:
    """Attach ``operation`` (and extra keys) to every log line in the block."""
    with structlog.contextvars.bound_contextvars(operation=operation, **context):
        yield


def get_logger(name: str) -> Any:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
