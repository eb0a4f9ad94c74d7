"""Pytest configuration and shared fixtures."""
import os
from typing import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

# Set test environment variables BEFORE any rcm imports
os.environ["TESTING"] = "true"
os.environ["ENVIRONMENT"] = "test"
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.pop("SENTRY_DSN", None)
os.environ["RCM_RETRY_BACKOFF_SECONDS"] = "0"
os.environ.setdefault("RCM_LOCK_TIMEOUT_SECONDS", "5")

from rcm.config.database import create_database_engine, init_db
from rcm.services.rcm_service import TransactionalRCMService
from rcm.services.transactions.manager import ConnectionManager
from rcm.services.transactions.retry import RetryCoordinator

# Import factories and configure them
from tests.factories import (
    ClaimFactory,
    PatientAccountFactory,
    PaymentFactory,
)


@pytest.fixture(scope="function")
def database_url(tmp_path) -> str:
    """
    File-backed SQLite database per test.

    Service code and fixtures use separate connections, the way separate
    request workers would against a real server.
    """
    return f"sqlite:///{tmp_path / 'rcm_test.db'}"


@pytest.fixture(scope="function")
def test_engine(database_url):
    """Engine used by the code under test (pooled, SAVEPOINT-capable)."""
    engine = create_database_engine(database_url, pool_size=10, max_overflow=5, pool_timeout=5)
    init_db(engine)
    try:
        yield engine
    finally:
        engine.dispose()


# Test database setup
@pytest.fixture(scope="function")
def test_db(test_engine, database_url) -> Generator[Session, None, None]:
    """
    Session for arranging and inspecting data.

    It uses a plain engine: pysqlite only opens a transaction for writes, so
    reads from tests never hold the database write lock.
    """
    fixture_engine = create_engine(database_url, connect_args={"check_same_thread": False})
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=fixture_engine)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        fixture_engine.dispose()


@pytest.fixture(scope="function")
def db_session(test_db: Session) -> Generator[Session, None, None]:
    """Provide a database session for tests with factories bound to it."""
    ClaimFactory._meta.sqlalchemy_session = test_db
    PatientAccountFactory._meta.sqlalchemy_session = test_db
    PaymentFactory._meta.sqlalchemy_session = test_db

    yield test_db
    test_db.rollback()


@pytest.fixture
def no_sleep():
    """Sleep replacement recording requested delays."""
    delays = []
    return delays.append, delays


@pytest.fixture
def connection_manager(test_engine) -> ConnectionManager:
    return ConnectionManager(test_engine, lock_timeout_seconds=5)


@pytest.fixture
def retry_coordinator(connection_manager, no_sleep) -> RetryCoordinator:
    sleep, _ = no_sleep
    return RetryCoordinator(connection_manager, max_attempts=3, backoff_schedule=[0.1, 0.2, 0.4], sleep=sleep)


@pytest.fixture
def rcm_service(connection_manager, retry_coordinator) -> TransactionalRCMService:
    return TransactionalRCMService(connection_manager=connection_manager, retry_coordinator=retry_coordinator)


@pytest.fixture
def fresh(db_session):
    """Return a reloader that discards cached state before reading a row."""

    def _reload(model, ident):
        db_session.expire_all()
        return db_session.get(model, ident)

    return _reload


# Mock fixtures
@pytest.fixture(scope="function")
def alerts(mocker):
    """Capture Sentry reports made by the service facade with alerting enabled."""
    mock_capture = mocker.patch("rcm.config.sentry.capture_exception")
    mock_settings = mocker.patch("rcm.config.sentry.settings")
    mock_settings.enable_alerts = True
    mock_settings.alert_on_retry_exhaustion = True
    return mock_capture, mock_settings
