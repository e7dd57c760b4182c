"""Unit tests for logging configuration."""

import pytest
from structlog.contextvars import clear_contextvars

from refund_review.core.config import AppConfig, ObservabilityConfig, Settings
from refund_review.core.logging import bind_reviewer, get_logger, setup_logging
from tests.factories import REGIONAL_MANAGER


def _settings(level: str, record_format: str) -> Settings:
    return Settings(
        app=AppConfig(log_level=level),
        observability=ObservabilityConfig(log_record_format=record_format),
    )


class TestLoggingSetup:
    """Test logging setup functions."""

    def test_get_logger_returns_structlog_logger(self):
        """Test get_logger returns a structured logger."""
        logger = get_logger("test_module")
        assert logger is not None

    def test_setup_logging_with_json_format(self, capsys):
        setup_logging(_settings("INFO", "json"))

        get_logger("refund_review.test").info("Transaction ingested", transaction_id="T1")

        out = capsys.readouterr().out
        assert '"event": "Transaction ingested"' in out
        assert '"transaction_id": "T1"' in out

    def test_setup_logging_with_console_format(self):
        setup_logging(_settings("DEBUG", "console"))

    @pytest.mark.parametrize("level", ["DEBUG", "INFO", "WARNING", "ERROR"])
    def test_setup_logging_with_different_log_levels(self, level):
        setup_logging(_settings(level, "console"))

    def test_level_filters_lower_records(self, capsys):
        setup_logging(_settings("WARNING", "json"))

        get_logger("refund_review.test").info("Hidden message")

        assert "Hidden message" not in capsys.readouterr().out


class TestReviewerContext:
    """Test per-request reviewer context."""

    def test_bound_reviewer_appears_in_log_lines(self, capsys):
        setup_logging(_settings("INFO", "json"))

        bind_reviewer(REGIONAL_MANAGER)
        get_logger("refund_review.test").info("Review operation applied")
        clear_contextvars()

        out = capsys.readouterr().out
        assert f'"reviewer_id": "{REGIONAL_MANAGER.id}"' in out
        assert '"role": "regional-manager"' in out
