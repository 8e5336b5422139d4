"""Logfire setup and structured logging helpers for lifesync.

Modules log through ``logging.getLogger(__name__)``; Logfire captures those
records. Decrypted field values must never reach a log sink, so the names of
the encrypted attributes are added to Logfire's scrubbing patterns.
"""

import logging

import logfire
from fastapi import FastAPI

from src.core.config import settings


# Attribute names whose values are plaintext only inside the process
SCRUBBED_FIELDS: tuple[str, ...] = ("app_secret", "secret_key", "bio", "why", "penalty", "remark", "content")


def configure_logfire() -> None:
    """Configure Logfire; spans are only exported when a token is set."""
    logfire.configure(
        token=settings.logfire_token,
        service_name="lifesync",
        service_version="0.1.0",
        send_to_logfire="if-token-present",
        scrubbing=logfire.ScrubbingOptions(extra_patterns=list(SCRUBBED_FIELDS)),
    )
    logging.getLogger(__name__).info("Logfire configured", extra={"exporting": bool(settings.logfire_token)})


def instrument_fastapi(app: FastAPI) -> None:
    logfire.instrument_fastapi(app)
    logging.getLogger(__name__).info("FastAPI instrumentation configured")


def span(name: str) -> logfire.LogfireSpan:
    """Span around one workspace or engine operation, e.g. ``span("workspace.mark_task")``."""
    return logfire.span(name)


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    **context: object,
) -> None:
    """Log ``message`` at ``level`` with ``context`` attached as record attributes."""
    log_method = getattr(logger, level.lower())
    log_method(message, extra=context)


def log_with_user_context(
    logger: logging.Logger,
    level: str,
    message: str,
    user_id: str | None = None,
    **extra: object,
) -> None:
    """Log with the signed-in user's ID, plus e.g. ``device_id`` or ``collection``.

    ``user_id`` is omitted from the record when it is not known yet.
    """
    context = {"user_id": user_id, **extra} if user_id else extra
    log_with_context(logger, level, message, **context)
