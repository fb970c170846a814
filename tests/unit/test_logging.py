"""Unit tests for logging setup."""

import logging
from logging.handlers import RotatingFileHandler

import pytest
import structlog

from behavior_profile.config import Settings
from behavior_profile.logging import bound_context, get_logger, setup_logging


@pytest.fixture
def restore_logging():
    """Put the root logger and structlog back after the test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()


class TestSetupLogging:
    """Tests for setup_logging()."""

    def test_console_only(self, restore_logging):
        """Test the default setup installs a single console handler."""
        setup_logging(Settings(_env_file=None, log_level="debug"))

        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert root.level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_file_handler(self, restore_logging, tmp_path):
        """Test file logging adds a rotating handler in the log directory."""
        log_dir = tmp_path / "logs"
        setup_logging(
            Settings(_env_file=None, log_to_file=True, log_directory=str(log_dir))
        )

        handlers = logging.getLogger().handlers
        assert any(isinstance(h, RotatingFileHandler) for h in handlers)
        assert (log_dir / "behavior_profile.log").exists()

    def test_unknown_level_defaults_to_info(self, restore_logging):
        """Test an unrecognized level name falls back to INFO."""
        setup_logging(Settings(_env_file=None, log_level="chatty"))
        assert logging.getLogger().level == logging.INFO


class TestContext:
    """Tests for bound_context() and get_logger()."""

    def test_bound_context(self):
        """Test fields are bound only inside the block."""
        with bound_context(session_id="s1"):
            assert structlog.contextvars.get_contextvars()["session_id"] == "s1"
        assert "session_id" not in structlog.contextvars.get_contextvars()

    def test_get_logger(self):
        """Test loggers accept keyword fields."""
        with structlog.testing.capture_logs() as logs:
            get_logger("behavior_profile.test").info("stp_built", topics=2)

        assert logs == [{"event": "stp_built", "topics": 2, "log_level": "info"}]
