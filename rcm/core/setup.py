"""
Process setup and initialization.

Hosts embedding the financial core (API workers, batch jobs, CLI tools) call
``setup_core()`` once before constructing ``TransactionalRCMService``:
- Environment variable loading
- Sentry initialization
- Logging configuration
"""
import os

from dotenv import load_dotenv

from rcm.config.sentry import init_sentry
from rcm.utils.logger import get_logger, configure_logging


def setup_core() -> None:
    """
    Initialize environment, error tracking and logging.

    Order matters:
    1. Load environment variables from .env file
    2. Initialize Sentry error tracking
    3. Configure logging
    """
    load_dotenv()

    init_sentry()

    configure_logging(
        log_level=os.getenv("LOG_LEVEL", "info"),
        log_format=os.getenv("LOG_FORMAT", "json"),
        log_file=os.getenv(
            "LOG_FILE",
            "rcm.log" if os.getenv("ENVIRONMENT") == "production" else None,
        ),
        log_dir=os.getenv("LOG_DIR", "logs"),
    )

    logger = get_logger(__name__)
    logger.info("Financial core initialized", environment=os.getenv("ENVIRONMENT", "development"))
