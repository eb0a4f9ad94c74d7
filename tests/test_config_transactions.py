"""Tests for transaction, retry and lock settings."""
import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError as PydanticValidationError

from rcm.config import transactions
from rcm.config.transactions import TransactionSettings


@pytest.mark.unit
class TestTransactionSettings:
    """Tests for TransactionSettings class."""

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = TransactionSettings(_env_file=None)

        assert settings.max_retry_attempts == 3
        assert settings.backoff_schedule == [0.1, 0.2, 0.4]
        assert settings.lock_timeout_seconds == 10.0
        assert settings.lock_strategy == "auto"

    def test_from_env(self):
        env = {
            "RCM_MAX_RETRY_ATTEMPTS": "5",
            "RCM_RETRY_BACKOFF_SECONDS": "0.05, 0.5",
            "RCM_LOCK_TIMEOUT_SECONDS": "2.5",
            "RCM_LOCK_STRATEGY": "TABLE",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = TransactionSettings(_env_file=None)

        assert settings.max_retry_attempts == 5
        assert settings.backoff_schedule == [0.05, 0.5]
        assert settings.lock_timeout_seconds == 2.5
        assert settings.lock_strategy == "table"

    def test_rejects_negative_backoff(self):
        with pytest.raises(PydanticValidationError):
            TransactionSettings(_env_file=None, retry_backoff_seconds="0.1,-1")

    def test_rejects_unknown_lock_strategy(self):
        with pytest.raises(PydanticValidationError, match="not supported"):
            TransactionSettings(_env_file=None, lock_strategy="zookeeper")

    @pytest.mark.parametrize("attempts", [0, 21])
    def test_rejects_out_of_range_attempts(self, attempts):
        with pytest.raises(PydanticValidationError):
            TransactionSettings(_env_file=None, max_retry_attempts=attempts)

    def test_rejects_non_positive_lock_timeout(self):
        with pytest.raises(PydanticValidationError):
            TransactionSettings(_env_file=None, lock_timeout_seconds=0)


@pytest.mark.unit
class TestSettingsGetters:
    """Module-level getters read the loaded settings."""

    def test_getters(self):
        custom = TransactionSettings(
            _env_file=None,
            max_retry_attempts=4,
            retry_backoff_seconds="0",
            lock_timeout_seconds=1,
            lock_strategy="advisory",
        )
        with patch.object(transactions, "settings", custom):
            assert transactions.get_max_retry_attempts() == 4
            assert transactions.get_backoff_schedule() == [0.0]
            assert transactions.get_lock_timeout_seconds() == 1
            assert transactions.get_lock_strategy() == "advisory"

    def test_test_environment_disables_backoff(self):
        """conftest sets RCM_RETRY_BACKOFF_SECONDS=0 before import."""
        assert transactions.get_backoff_schedule() == [0.0]
