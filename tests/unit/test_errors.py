"""Tests for error classification and user notifications."""

import httpx
import pytest

from src.core.document_store import DocumentStoreError, InvalidPathError, RecordNotFoundError
from src.core.errors import (
    AlreadyMarkedError,
    DuplicateChallengeError,
    ErrorCategory,
    ErrorCode,
    ErrorSeverity,
    SecretKeyError,
    ValidationFailure,
    classify_error,
)
from src.core.notifier import NotificationKind, notify_error
from tests.unit.mocks import RecordingNotifier


@pytest.mark.unit
class TestClassifyError:
    """Tests for classify_error."""

    def test_duplicate_challenge(self):
        """Duplicate challenges get the fixed user-facing message."""
        response = classify_error(DuplicateChallengeError("Read", "c1"))

        assert response.code == ErrorCode.ERR_DUPLICATE_CHALLENGE
        assert response.category == ErrorCategory.VALIDATION
        assert response.message == "This quest is already active! Complete it first."

    def test_already_marked(self):
        """Repeat completions are classified as validation errors."""
        response = classify_error(AlreadyMarkedError("t1", "2024-03-10"))

        assert response.code == ErrorCode.ERR_ALREADY_MARKED
        assert response.message == "Already marked for today."

    def test_validation_failure_keeps_its_message(self):
        """Generic validation failures surface their own message."""
        response = classify_error(ValidationFailure("Task name is required"))

        assert response.code == ErrorCode.ERR_VALIDATION
        assert response.message == "Task name is required"
        assert response.severity == ErrorSeverity.LOW

    def test_secret_key(self):
        """Secret key errors are security errors with their own message."""
        response = classify_error(SecretKeyError("Incorrect Secret Key."))

        assert response.category == ErrorCategory.SECURITY
        assert response.message == "Incorrect Secret Key."
        assert response.severity == ErrorSeverity.HIGH

    def test_invalid_path(self):
        """IDs the store cannot address are reported as validation errors."""
        response = classify_error(InvalidPathError("Invalid store path: users/auth0|abc"))

        assert response.code == ErrorCode.ERR_VALIDATION
        assert response.message == "That item has an invalid ID."

    def test_record_not_found(self):
        """Missing records get a friendly message."""
        response = classify_error(RecordNotFoundError("Record not found in tasks: t1"))

        assert response.code == ErrorCode.ERR_RECORD_NOT_FOUND
        assert response.message == "That item no longer exists."

    def test_network_errors(self):
        """Connection failures and timeouts are network errors."""
        for exception in (
            ConnectionError("reset by peer"),
            TimeoutError(),
            httpx.ConnectError("refused"),
            DocumentStoreError("upstream returned 503"),
        ):
            response = classify_error(exception)
            assert response.code == ErrorCode.ERR_NETWORK_ERROR
            assert response.category == ErrorCategory.WRITE

    def test_permission_denied(self):
        """Rejected writes are reported as such."""
        response = classify_error(DocumentStoreError("permission denied for users/u2"))

        assert response.code == ErrorCode.ERR_WRITE_FAILED
        assert response.message == "The server rejected the change."

    def test_generic_store_error(self):
        """Other store errors ask the user to retry."""
        response = classify_error(DocumentStoreError("disk I/O error"))

        assert response.code == ErrorCode.ERR_WRITE_FAILED
        assert response.message == "Could not save your change. Please try again."

    def test_unknown_error(self):
        """Anything else is unknown."""
        response = classify_error(RuntimeError("boom"))

        assert response.code == ErrorCode.ERR_UNKNOWN
        assert response.category == ErrorCategory.UNKNOWN


@pytest.mark.unit
class TestNotifyError:
    """Tests for notify_error."""

    def test_reports_message_as_error(self):
        """The classified message is sent to the notifier as an error."""
        notifier = RecordingNotifier()

        category = notify_error(notifier, ValidationFailure("Amount must be positive"))

        assert category == ErrorCategory.VALIDATION
        assert notifier.messages == [("Amount must be positive", NotificationKind.ERROR)]
