"""Structured logging configuration for Conduit.

Every log line is a structlog event with keyword context. JSON output is
meant for production; the console renderer is for local development.
Webhook secrets and signatures never reach the output: any event key that
names one is masked before rendering.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from structlog.typing import Processor

_configured = False

REDACTED = "[redacted]"
SENSITIVE_KEYS = frozenset(
    {"secret", "webhook_secret", "signature", "signature_sent", "authorization"}
)

# Chatty client libraries, raised to WARNING unless debugging
QUIET_LOGGERS = ("httpx", "httpcore")


def redact_secrets(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor masking values of sensitive keys."""
    for key in SENSITIVE_KEYS.intersection(event_dict):
        if event_dict[key] is not None:
            event_dict[key] = REDACTED
    return event_dict


def configure_logging(
    level: str = "INFO",
    format: str = "json",
) -> None:
    """Configure structured logging for Conduit.

    Safe to call more than once; the last call wins, so the API lifespan
    can apply settings after modules have already created loggers.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL). Unknown
            names fall back to INFO.
        format: "json" for production, "text" for a console renderer.

    Example:
        ```python
        from conduit.logging import configure_logging, get_logger

        configure_logging(level="DEBUG", format="text")
        logger = get_logger(__name__)
        logger.info("Dispatcher started", max_concurrent=10)
        ```
    """
    global _configured

    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level, force=True)
    quiet_level = log_level if log_level <= logging.DEBUG else max(log_level, logging.WARNING)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    renderer: Processor
    if format.lower() == "json":
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    _configured = True


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, configuring defaults on first use."""
    if not _configured:
        configure_logging()

    return structlog.get_logger(name)  # type: ignore[no-any-return]


@contextmanager
def log_context(**kwargs: object) -> Iterator[None]:
    """Bind keys to every log line emitted inside the block.

    Bindings live in contextvars, so concurrent tasks (one per webhook
    pipeline, one per request) keep their own context.

    Example:
        ```python
        with log_context(tenant_id="ten_123", request_id="req_abc"):
            logger.info("Payload accepted")  # includes tenant_id and request_id
        ```
    """
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield


__all__ = ["configure_logging", "get_logger", "log_context", "redact_secrets"]
