"""Tests for process setup."""
import os
from unittest.mock import patch

import pytest

from rcm.core.setup import setup_core


@pytest.mark.unit
class TestSetupCore:
    """Tests for setup_core function."""

    def test_initializes_in_order(self):
        calls = []
        with patch("rcm.core.setup.load_dotenv", side_effect=lambda: calls.append("env")), \
             patch("rcm.core.setup.init_sentry", side_effect=lambda: calls.append("sentry")), \
             patch("rcm.core.setup.configure_logging", side_effect=lambda **kw: calls.append("logging")):
            setup_core()

        assert calls == ["env", "sentry", "logging"]

    def test_logging_options_from_environment(self):
        env = {"LOG_LEVEL": "debug", "LOG_FORMAT": "console", "LOG_DIR": "/tmp/rcm-logs", "ENVIRONMENT": "test"}
        with patch.dict(os.environ, env), \
             patch("rcm.core.setup.load_dotenv"), \
             patch("rcm.core.setup.init_sentry"), \
             patch("rcm.core.setup.configure_logging") as mock_configure:
            os.environ.pop("LOG_FILE", None)
            setup_core()

        mock_configure.assert_called_once_with(
            log_level="debug", log_format="console", log_file=None, log_dir="/tmp/rcm-logs"
        )

    def test_production_logs_to_file(self):
        with patch.dict(os.environ, {"ENVIRONMENT": "production"}), \
             patch("rcm.core.setup.load_dotenv"), \
             patch("rcm.core.setup.init_sentry"), \
             patch("rcm.core.setup.configure_logging") as mock_configure:
            os.environ.pop("LOG_FILE", None)
            setup_core()

        assert mock_configure.call_args[1]["log_file"] == "rcm.log"
