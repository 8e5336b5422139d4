"""User-visible notification hook.

The core only decides *what* to tell the user; presentation (toasts, sounds)
belongs to whoever implements ``Notifier``.
"""

import logging
from enum import StrEnum
from typing import Protocol

from src.core.errors import ErrorCategory, classify_error


logger = logging.getLogger(__name__)


class NotificationKind(StrEnum):
    """Kind of user-visible notification."""

    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"


class Notifier(Protocol):
    """Receives user-visible messages from the core."""

    def notify(self, message: str, kind: NotificationKind) -> None: ...


class LoggingNotifier:
    """Notifier that only writes messages to the log."""

    def notify(self, message: str, kind: NotificationKind) -> None:
        level = logging.WARNING if kind is NotificationKind.ERROR else logging.INFO
        logger.log(level, "notify[%s]: %s", kind, message)


def notify_error(notifier: Notifier, exception: BaseException) -> ErrorCategory:
    """Classify ``exception`` and report it as an error notification.

    Returns:
        The category the error was classified under
    """
    response = classify_error(exception)
    logger.info(
        "Reporting error to user",
        extra={"code": response.code, "category": response.category.value, "error": str(exception)},
    )
    notifier.notify(response.message, NotificationKind.ERROR)
    return response.category
