"""Tests for Conduit structured logging."""

import json
import logging

import pytest
import structlog

from conduit.logging import (
    REDACTED,
    configure_logging,
    get_logger,
    log_context,
    redact_secrets,
)


@pytest.fixture(autouse=True)
def restore_logging():
    """Point the root handler back at the session's stdout after each test."""
    yield
    configure_logging()


class TestConfigureLogging:
    """Tests for logging configuration."""

    def test_configure_with_defaults(self):
        """Should configure with INFO level and JSON format by default."""
        configure_logging()
        logger = get_logger("test")
        logger.info("test message")
        assert logging.getLogger().level == logging.INFO

    def test_reconfigure_applies_new_level(self):
        """A later call replaces the earlier configuration."""
        configure_logging(level="INFO")
        configure_logging(level="ERROR", format="text")
        assert logging.getLogger().level == logging.ERROR

    def test_unknown_level_falls_back(self):
        """Unknown levels should not raise."""
        configure_logging(level="NOPE")
        assert logging.getLogger().level == logging.INFO

    def test_http_client_loggers_quieted(self):
        configure_logging(level="INFO")
        assert logging.getLogger("httpx").level == logging.WARNING

        configure_logging(level="DEBUG")
        assert logging.getLogger("httpx").level == logging.DEBUG


class TestRedaction:
    """Secrets never reach the rendered output."""

    def test_sensitive_keys_masked(self):
        event = {"event": "Webhook created", "secret": "whsec_x", "signature": "abc", "id": "w"}
        redacted = redact_secrets(None, "info", event)
        assert redacted["secret"] == REDACTED
        assert redacted["signature"] == REDACTED
        assert redacted["id"] == "w"

    def test_none_left_alone(self):
        assert redact_secrets(None, "info", {"secret": None}) == {"secret": None}

    def test_rendered_json_has_no_secret(self, capsys):
        configure_logging(level="INFO", format="json")
        get_logger("test").info("Webhook created", secret="whsec_leak")

        line = capsys.readouterr().out.strip().splitlines()[-1]
        assert "whsec_leak" not in line
        assert json.loads(line)["secret"] == REDACTED


class TestLogContext:
    """Tests for context binding."""

    def test_context_bound_inside_block_only(self):
        with log_context(tenant_id="ten_1", webhook_id="whk_1"):
            assert structlog.contextvars.get_contextvars() == {
                "tenant_id": "ten_1",
                "webhook_id": "whk_1",
            }
        assert "tenant_id" not in structlog.contextvars.get_contextvars()

    def test_get_logger_without_name(self):
        assert get_logger() is not None
