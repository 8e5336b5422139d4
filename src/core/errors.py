"""Exception types and error classification for user-facing notifications."""

from enum import Enum
from typing import Literal

from pydantic import BaseModel

from src.core.config import Constants


class LifeSyncError(Exception):
    """Base class for errors raised by the lifesync core."""


class ValidationFailure(LifeSyncError, ValueError):
    """Input rejected before any state mutation (missing field, bad value)."""


class DuplicateChallengeError(ValidationFailure):
    """An active challenge with the same title or linked task already exists."""

    def __init__(self, title: str, existing_id: str) -> None:
        super().__init__(f"Challenge '{title}' is already active (existing challenge {existing_id})")
        self.title = title
        self.existing_id = existing_id


class AlreadyMarkedError(ValidationFailure):
    """A completion date was already recorded for this task or challenge."""

    def __init__(self, record_id: str, date: str) -> None:
        super().__init__(f"Record {record_id} already marked for {date}")
        self.record_id = record_id
        self.date = date


class SecretKeyError(LifeSyncError, PermissionError):
    """A destructive action was attempted without the correct secret key."""


class ErrorCategory(Enum):
    """Categories of errors the core reports or degrades on."""

    RESOLUTION = "resolution"
    DECRYPTION = "decryption"
    WRITE = "write"
    VALIDATION = "validation"
    SECURITY = "security"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCode:
    """Error codes for specific error conditions."""

    # Validation errors
    ERR_DUPLICATE_CHALLENGE = "ERR_DUPLICATE_CHALLENGE"
    ERR_ALREADY_MARKED = "ERR_ALREADY_MARKED"
    ERR_VALIDATION = "ERR_VALIDATION"
    ERR_RECORD_NOT_FOUND = "ERR_RECORD_NOT_FOUND"

    # Security errors
    ERR_SECRET_KEY = "ERR_SECRET_KEY"

    # Store errors
    ERR_WRITE_FAILED = "ERR_WRITE_FAILED"
    ERR_NETWORK_ERROR = "ERR_NETWORK_ERROR"

    # Generic errors
    ERR_UNKNOWN = "ERR_UNKNOWN"


class ErrorResponse(BaseModel):
    """Structured error response with a user-friendly message."""

    code: str
    category: ErrorCategory
    message: str
    severity: ErrorSeverity


_ERROR_PATTERNS: dict[Literal["network", "permission"], dict[str, list[str] | set[str]]] = {
    "network": {
        "phrases": [
            "connection",
            "timeout",
            "timed out",
            "network",
            "503",
            "502",
            "504",
            "unreachable",
        ],
        "exception_types": {"ConnectionError", "TimeoutError", "ConnectError", "ReadTimeout"},
    },
    "permission": {
        "phrases": ["permission denied", "unauthorized", "403"],
        "exception_types": {"PermissionError"},
    },
}


def _match_error_pattern(
    *,
    error_str: str,
    exception_type: str,
    pattern_type: Literal["network", "permission"],
) -> bool:
    """Return True if the error matches the configured pattern type."""
    patterns = _ERROR_PATTERNS[pattern_type]
    return any(phrase in error_str for phrase in patterns["phrases"]) or exception_type in patterns["exception_types"]


def classify_error(exception: BaseException) -> ErrorResponse:  # noqa: PLR0911
    """Classify an error and return a structured response for the notifier.

    Args:
        exception: The exception raised while handling a user action

    Returns:
        ErrorResponse with code, category, message, and severity
    """
    error_str = str(exception).lower()
    exception_type = type(exception).__name__

    if isinstance(exception, DuplicateChallengeError):
        return ErrorResponse(
            code=ErrorCode.ERR_DUPLICATE_CHALLENGE,
            category=ErrorCategory.VALIDATION,
            message=Constants.MSG_CHALLENGE_DUPLICATE,
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, AlreadyMarkedError):
        return ErrorResponse(
            code=ErrorCode.ERR_ALREADY_MARKED,
            category=ErrorCategory.VALIDATION,
            message=Constants.MSG_ALREADY_MARKED,
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, SecretKeyError):
        return ErrorResponse(
            code=ErrorCode.ERR_SECRET_KEY,
            category=ErrorCategory.SECURITY,
            message=str(exception),
            severity=ErrorSeverity.HIGH,
        )

    if isinstance(exception, ValidationFailure):
        return ErrorResponse(
            code=ErrorCode.ERR_VALIDATION,
            category=ErrorCategory.VALIDATION,
            message=str(exception),
            severity=ErrorSeverity.LOW,
        )

    if exception_type == "InvalidPathError":
        return ErrorResponse(
            code=ErrorCode.ERR_VALIDATION,
            category=ErrorCategory.VALIDATION,
            message="That item has an invalid ID.",
            severity=ErrorSeverity.LOW,
        )

    if exception_type == "RecordNotFoundError" or (exception_type == "KeyError" and "not found" in error_str):
        return ErrorResponse(
            code=ErrorCode.ERR_RECORD_NOT_FOUND,
            category=ErrorCategory.VALIDATION,
            message="That item no longer exists.",
            severity=ErrorSeverity.LOW,
        )

    if _match_error_pattern(error_str=error_str, exception_type=exception_type, pattern_type="permission"):
        return ErrorResponse(
            code=ErrorCode.ERR_WRITE_FAILED,
            category=ErrorCategory.WRITE,
            message="The server rejected the change.",
            severity=ErrorSeverity.HIGH,
        )

    if _match_error_pattern(error_str=error_str, exception_type=exception_type, pattern_type="network"):
        return ErrorResponse(
            code=ErrorCode.ERR_NETWORK_ERROR,
            category=ErrorCategory.WRITE,
            message="Network error. Your change could not be saved.",
            severity=ErrorSeverity.MEDIUM,
        )

    if exception_type == "DocumentStoreError":
        return ErrorResponse(
            code=ErrorCode.ERR_WRITE_FAILED,
            category=ErrorCategory.WRITE,
            message="Could not save your change. Please try again.",
            severity=ErrorSeverity.MEDIUM,
        )

    return ErrorResponse(
        code=ErrorCode.ERR_UNKNOWN,
        category=ErrorCategory.UNKNOWN,
        message="An unexpected error occurred. Please try again later.",
        severity=ErrorSeverity.MEDIUM,
    )
