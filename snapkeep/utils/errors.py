"""Error handling utilities for SnapKeep."""

import sys
import traceback
from typing import Optional

import click


class SnapKeepError(Exception):
    """Base exception for SnapKeep errors."""

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        suggestions: Optional[list] = None,
    ):
        self.message = message
        self.details = details
        self.suggestions = suggestions or []
        super().__init__(message)


class ConfigurationError(SnapKeepError):
    """Raised when configuration is invalid or missing."""

    pass


class ValidationError(SnapKeepError):
    """Raised when a persisted document fails validation."""

    pass


class StorageError(SnapKeepError):
    """Raised when local backup storage operations fail."""

    pass


class BackupError(SnapKeepError):
    """Raised when creating a backup fails."""

    pass


class RestoreError(SnapKeepError):
    """Raised when staging or executing a restore fails."""

    pass


class IntegrityMismatchError(RestoreError):
    """Raised when a content digest does not match the recorded one."""

    def __init__(self, message: str, expected: str = "", actual: str = "", **kwargs):
        self.expected = expected
        self.actual = actual
        if expected and actual and "details" not in kwargs:
            kwargs["details"] = f"expected {expected[:16]}..., got {actual[:16]}..."
        super().__init__(message, **kwargs)


class LockedResourceError(RestoreError):
    """Raised when the engine could not release its file handles in time."""

    pass


class ExpiredOrAbandonedError(RestoreError):
    """Raised when a staged restore outlived its TTL or attempt budget."""

    pass


class RemoteError(SnapKeepError):
    """Base class for remote replica failures."""

    pass


class NotAuthenticatedError(RemoteError):
    """Raised when the remote credential is missing, expired or rejected."""

    pass


class TransportError(RemoteError):
    """Raised when a remote network or API call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        self.status_code = status_code
        super().__init__(message, **kwargs)


class ErrorHandler:
    """Handles and formats errors for user-friendly display."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    def handle_error(self, error: Exception, context: Optional[str] = None) -> None:
        """
        Handle and display error with appropriate formatting.

        Args:
            error: Exception to handle
            context: Optional context about when/where error occurred
        """
        if isinstance(error, SnapKeepError):
            self._handle_snapkeep_error(error, context)
        else:
            self._handle_generic_error(error, context)

    def _handle_snapkeep_error(self, error: SnapKeepError, context: Optional[str]) -> None:
        """Handle SnapKeep-specific errors."""
        # Main error message
        click.echo(f"✗ {error.message}", err=True)

        # Add context if provided
        if context:
            click.echo(f"Context: {context}", err=True)

        # Add details if available
        if error.details:
            click.echo(f"Details: {error.details}", err=True)

        # Add suggestions if available
        if error.suggestions:
            click.echo("\nSuggestions:", err=True)
            for suggestion in error.suggestions:
                click.echo(f"  • {suggestion}", err=True)

        # Add verbose traceback if requested
        if self.verbose:
            click.echo("\nFull traceback:", err=True)
            traceback.print_exc()

    def _handle_generic_error(self, error: Exception, context: Optional[str]) -> None:
        """Handle generic Python exceptions."""
        error_type = type(error).__name__

        # Format error message based on type
        if isinstance(error, FileNotFoundError):
            message = f"File not found: {error}"
            suggestions = [
                "Check that the data directory is correct",
                "Ensure the file exists and is readable",
            ]
        elif isinstance(error, PermissionError):
            message = f"Permission denied: {error}"
            suggestions = [
                "Check file/directory permissions",
                "Close other programs that may hold the database open",
            ]
        elif isinstance(error, ConnectionError):
            message = f"Connection failed: {error}"
            suggestions = [
                "Check your internet connection",
                "Verify that the remote storage service is reachable",
            ]
        else:
            message = f"{error_type}: {error}"
            suggestions = []

        # Display error
        click.echo(f"✗ {message}", err=True)

        if context:
            click.echo(f"Context: {context}", err=True)

        if suggestions:
            click.echo("\nSuggestions:", err=True)
            for suggestion in suggestions:
                click.echo(f"  • {suggestion}", err=True)

        if self.verbose:
            click.echo("\nFull traceback:", err=True)
            traceback.print_exc()

    def exit_with_error(self, error: Exception, context: Optional[str] = None, exit_code: int = 1) -> None:
        """Handle error and exit with specified code."""
        self.handle_error(error, context)
        sys.exit(exit_code)


def create_error_suggestions(error_type: str, **kwargs) -> list:
    """
    Create contextual error suggestions based on error type.

    Args:
        error_type: Type of error
        **kwargs: Additional context information

    Returns:
        list: List of suggestion strings
    """
    suggestions = {
        "not_authenticated": [
            "Run 'snapkeep remote configure' to store a fresh access token",
            "Backups continue locally until the remote account is reconnected",
        ],
        "transport_failure": [
            "Check your internet connection",
            "Retry the operation once the remote service is reachable",
        ],
        "integrity_mismatch": [
            "The backup file may be corrupted; choose a different backup",
            "Create a new backup before retrying the restore",
        ],
        "locked_resource": [
            "Use 'snapkeep restore stage' and restart the application",
            "Close other programs that may hold the database open",
        ],
        "backup_not_found": [
            "Run 'snapkeep backup list' to see available backups",
            "Use --source remote for backups that only exist remotely",
        ],
        "configuration_invalid": [
            "Check YAML syntax in the configuration file",
            "Verify all required fields are present",
            "Validate configuration values are correct",
        ],
    }

    result = list(suggestions.get(error_type, []))
    backup_id = kwargs.get("backup_id")
    if backup_id and error_type == "backup_not_found":
        result.insert(0, f"No metadata was found for backup '{backup_id}'")
    return result


def format_validation_errors(errors: list) -> str:
    """
    Format validation errors for display.

    Args:
        errors: List of validation error messages

    Returns:
        str: Formatted error message
    """
    if not errors:
        return "No validation errors"

    if len(errors) == 1:
        return f"Validation error: {errors[0]}"

    formatted = "Validation errors:\n"
    for i, error in enumerate(errors, 1):
        formatted += f"  {i}. {error}\n"

    return formatted.strip()
