"""Tests for error handling system."""

from unittest.mock import patch

import pytest

from snapkeep.utils.errors import (
    ConfigurationError,
    ErrorHandler,
    ExpiredOrAbandonedError,
    IntegrityMismatchError,
    LockedResourceError,
    NotAuthenticatedError,
    RemoteError,
    RestoreError,
    SnapKeepError,
    StorageError,
    TransportError,
    create_error_suggestions,
    format_validation_errors,
)


class TestSnapKeepError:
    """Test custom error classes."""

    def test_snapkeep_error_basic(self):
        """Test basic SnapKeepError functionality."""
        error = SnapKeepError("Test error message")

        assert str(error) == "Test error message"
        assert error.message == "Test error message"
        assert error.details is None
        assert error.suggestions == []

    def test_snapkeep_error_with_details(self):
        """Test SnapKeepError with details and suggestions."""
        suggestions = ["Try this", "Or try that"]
        error = SnapKeepError("Test error", details="Detailed explanation", suggestions=suggestions)

        assert error.message == "Test error"
        assert error.details == "Detailed explanation"
        assert error.suggestions == suggestions

    def test_specific_error_types(self):
        """Test specific error type inheritance."""
        assert isinstance(ConfigurationError("x"), SnapKeepError)
        assert isinstance(StorageError("x"), SnapKeepError)
        assert isinstance(IntegrityMismatchError("x"), RestoreError)
        assert isinstance(LockedResourceError("x"), RestoreError)
        assert isinstance(ExpiredOrAbandonedError("x"), RestoreError)
        assert isinstance(NotAuthenticatedError("x"), RemoteError)
        assert isinstance(TransportError("x"), RemoteError)

    def test_integrity_mismatch_details(self):
        """Test digests are summarized in the details."""
        error = IntegrityMismatchError("Checksum mismatch", expected="a" * 64, actual="b" * 64)

        assert error.expected == "a" * 64
        assert error.details == f"expected {'a' * 16}..., got {'b' * 16}..."

    def test_transport_error_status(self):
        """Test the HTTP status is kept."""
        assert TransportError("failed", status_code=502).status_code == 502


class TestErrorHandler:
    """Test error handler functionality."""

    def setup_method(self):
        """Setup test environment."""
        self.handler = ErrorHandler(verbose=False)

    def test_handle_snapkeep_error(self):
        """Test handling SnapKeep-specific errors."""
        error = SnapKeepError(
            "Test error message",
            details="Error details",
            suggestions=["Suggestion 1", "Suggestion 2"],
        )

        with patch("click.echo") as mock_echo:
            self.handler.handle_error(error, "Test context")

        output = " ".join(str(call) for call in mock_echo.call_args_list)
        assert "✗ Test error message" in output
        assert "Context: Test context" in output
        assert "Details: Error details" in output
        assert "Suggestion 2" in output

    def test_snapkeep_error_output_order(self):
        """Test message, context, details and suggestions are printed in that order."""
        error = SnapKeepError("Broken", details="why", suggestions=["fix it"])

        with patch("click.echo") as mock_echo:
            self.handler.handle_error(error, "restoring")

        lines = [call.args[0] for call in mock_echo.call_args_list]
        assert lines == ["✗ Broken", "Context: restoring", "Details: why", "\nSuggestions:", "  • fix it"]

    def test_handle_permission_error(self):
        """Test generic errors get suggestions."""
        with patch("click.echo") as mock_echo:
            self.handler.handle_error(PermissionError("store.db"))

        output = " ".join(str(call) for call in mock_echo.call_args_list)
        assert "Permission denied" in output
        assert "Close other programs" in output

    def test_handle_unknown_error(self):
        """Test unknown exceptions show their type."""
        with patch("click.echo") as mock_echo:
            self.handler.handle_error(RuntimeError("boom"))

        mock_echo.assert_any_call("✗ RuntimeError: boom", err=True)

    def test_exit_with_error(self):
        """Test the process exits with the given code."""
        with patch("click.echo"):
            with pytest.raises(SystemExit) as exc_info:
                self.handler.exit_with_error(SnapKeepError("fatal"), exit_code=3)

        assert exc_info.value.code == 3


class TestErrorHelpers:
    """Test suggestion and formatting helpers."""

    def test_backup_not_found_suggestions(self):
        """Test the backup id is named first."""
        suggestions = create_error_suggestions("backup_not_found", backup_id="backup-manual-x")

        assert suggestions[0] == "No metadata was found for backup 'backup-manual-x'"
        assert any("snapkeep backup list" in s for s in suggestions)

    def test_unknown_error_type(self):
        """Test unknown types produce no suggestions."""
        assert create_error_suggestions("unheard_of") == []

    def test_suggestions_are_copies(self):
        """Test callers cannot mutate the shared table."""
        create_error_suggestions("locked_resource").append("extra")

        assert "extra" not in create_error_suggestions("locked_resource")

    def test_format_validation_errors(self):
        """Test single and multiple error formatting."""
        assert format_validation_errors([]) == "No validation errors"
        assert format_validation_errors(["bad"]) == "Validation error: bad"
        assert format_validation_errors(["one", "two"]) == "Validation errors:\n  1. one\n  2. two"
