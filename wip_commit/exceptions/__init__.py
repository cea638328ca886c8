"""
WIP Commit exceptions module.

This module defines custom exceptions for the wip-commit tool.
"""


class WipCommitError(Exception):
    """Base exception for all wip-commit related errors."""
    pass


class ConfigurationError(WipCommitError):
    """Raised when there are configuration-related issues."""
    pass


class GitOperationError(WipCommitError):
    """Raised when git operations fail."""

    def __init__(self, message: str, stderr: str = "", returncode: int = None):
        super().__init__(message)
        self.stderr = stderr
        self.returncode = returncode


class SecurityError(WipCommitError):
    """Raised when security-related operations fail."""
    pass


class ValidationError(WipCommitError):
    """Raised when input validation fails."""

    def __init__(self, message: str, sensitive_details: list = None):
        """
        Initialize ValidationError with optional sensitive content details.

        Args:
            message: Error message
            sensitive_details: List of sensitive content details (optional)
                           Each detail is a dict with 'type', 'content', 'line_number' keys
        """
        super().__init__(message)
        self.sensitive_details = sensitive_details or []


class FileOperationError(WipCommitError):
    """Raised when file operations fail."""
    pass
