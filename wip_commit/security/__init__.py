"""
Security utilities for WIP Commit.

This module provides secure storage of the oracle API key, validation of
commit messages and redaction of secrets before text leaves the machine.
"""

import re
import logging
from typing import Optional
import keyring
from ..exceptions import SecurityError, ValidationError

logger = logging.getLogger(__name__)


class APIKeyManager:
    """Secure API key management using system keyring."""

    SERVICE_NAME = "wip-commit"

    def __init__(self):
        """Initialize the API key manager."""
        try:
            # Test keyring availability
            keyring.get_keyring()
        except Exception as e:
            logger.warning(f"Keyring not available: {e}")

    def store_api_key(self, provider: str, api_key: str) -> None:
        """
        Store API key securely in system keyring.

        Args:
            provider: The AI provider name (e.g., 'openai')
            api_key: The API key to store

        Raises:
            SecurityError: If keyring storage fails
        """
        try:
            keyring.set_password(self.SERVICE_NAME, provider, api_key)
            logger.info(f"API key for {provider} stored securely")
        except Exception as e:
            raise SecurityError(f"Failed to store API key for {provider}: {e}")

    def get_api_key(self, provider: str) -> Optional[str]:
        """
        Retrieve API key from secure storage.

        Args:
            provider: The AI provider name

        Returns:
            The API key if found, None otherwise

        Raises:
            SecurityError: If keyring access fails
        """
        try:
            api_key = keyring.get_password(self.SERVICE_NAME, provider)
            if api_key:
                logger.debug(f"Retrieved API key for {provider} from secure storage")
            return api_key
        except Exception as e:
            raise SecurityError(f"Failed to retrieve API key for {provider}: {e}")


class InputValidator:
    """Input validation and sanitization utilities."""

    # Patterns for detecting sensitive information
    SENSITIVE_PATTERNS = [
        r'(?i)(api[_\s-]?key|secret|token|password)\s*[:=]\s*[\'"]+([a-zA-Z0-9\-_]{15,})',
        r'(?i)(api[_\s-]?key|secret|token|password)\s*[:=]\s*([a-zA-Z0-9\-_]{30,})',
        r'(?i)(bearer|authorization)\s*:\s*[\'"]*([a-zA-Z0-9\-_\.]{20,})',
        r'(?i)sk-[a-zA-Z0-9\-_]{20,}',  # OpenAI / Anthropic style keys
        r'(?i)xoxb-[a-zA-Z0-9\-]+',  # Slack token pattern
        r'(?i)ghp_[a-zA-Z0-9]{36}',  # GitHub personal access token
        r'(?i)(AKIA[0-9A-Z]{16})',  # AWS access key
    ]

    CRITICAL_PATTERNS = [
        (r'(?i)sk-[a-zA-Z0-9\-_]{32,}', 'API Key'),
        (r'(?i)ghp_[a-zA-Z0-9]{36}', 'GitHub Personal Access Token'),
        (r'(?i)(AKIA[0-9A-Z]{16})', 'AWS Access Key'),
        (r'(?i)xoxb-[a-zA-Z0-9\-]{40,}', 'Slack Token'),
    ]

    MAX_COMMIT_MESSAGE_LENGTH = 200

    @classmethod
    def validate_commit_message(cls, message: str) -> str:
        """
        Validate a commit message before it is handed to git.

        Only the subject line is kept; surrounding quotes and code fences
        that oracles like to add are stripped.

        Args:
            message: The commit message to validate

        Returns:
            Validated commit message

        Raises:
            ValidationError: If message is invalid
        """
        if not message or not message.strip():
            raise ValidationError("Empty commit message")

        lines = [line.strip() for line in message.strip().splitlines()]
        lines = [line for line in lines if line and not line.startswith('```')]
        if not lines:
            raise ValidationError("Empty commit message")

        subject = lines[0]
        if len(subject) >= 2 and subject[0] == subject[-1] and subject[0] in ('"', "'", '`'):
            subject = subject[1:-1].strip()

        if not subject:
            raise ValidationError("Empty commit message")

        if len(subject) > cls.MAX_COMMIT_MESSAGE_LENGTH:
            raise ValidationError(
                f"Commit message too long: {len(subject)} chars (max: {cls.MAX_COMMIT_MESSAGE_LENGTH})"
            )

        cls._check_for_sensitive_data_strict(subject, "commit message")

        return subject

    @classmethod
    def validate_api_key(cls, api_key: str, provider: str = "openai") -> str:
        """
        Validate API key format.

        Raises:
            ValidationError: If API key format is invalid
        """
        if not api_key or not api_key.strip():
            raise ValidationError("Empty API key")

        api_key = api_key.strip()

        if provider.lower() == "openai" and len(api_key) < 20:
            raise ValidationError("API key too short")

        return api_key

    @classmethod
    def _check_for_sensitive_data_strict(cls, content: str, content_type: str) -> None:
        """
        Check content for sensitive information patterns.

        Raises:
            ValidationError: If sensitive data is detected
        """
        sensitive_details = []

        for pattern, sensitive_type in cls.CRITICAL_PATTERNS:
            for match in re.finditer(pattern, content):
                line_start = content.rfind('\n', 0, match.start()) + 1
                line_end = content.find('\n', match.end())
                if line_end == -1:
                    line_end = len(content)

                sensitive_details.append({
                    'type': sensitive_type,
                    'content': content[line_start:line_end].strip(),
                    'line_number': content[:line_start].count('\n') + 1,
                    'match': match.group()
                })

        if sensitive_details:
            logger.warning(
                f"Sensitive data pattern detected in {content_type}", extra={
                    'details': 'Security validation triggered'})
            raise ValidationError(
                f"Potential sensitive information detected in {content_type}. "
                "Please review and remove any API keys, tokens, or passwords.",
                sensitive_details=sensitive_details
            )


def redact_sensitive(text: str) -> str:
    """
    Redact secrets from text before it is logged or sent to an oracle.

    Args:
        text: Text to filter

    Returns:
        Filtered text with sensitive info redacted
    """
    if not text:
        return text

    filtered = text
    for pattern in InputValidator.SENSITIVE_PATTERNS:
        # Keep the label (group 1) when the pattern captures label and value
        if re.compile(pattern).groups >= 2:
            filtered = re.sub(pattern, r'\1: [REDACTED]', filtered)
        else:
            filtered = re.sub(pattern, '[REDACTED]', filtered)

    return filtered


class SecureLogger:
    """Logger wrapper that filters sensitive information."""

    def __init__(self, logger: logging.Logger):
        """Initialize secure logger wrapper."""
        self.logger = logger

    def log_safe(self, level: int, message: str, details: Optional[str] = None) -> None:
        """
        Log message after filtering sensitive information.

        Args:
            level: Log level
            message: Log message
            details: Additional details
        """
        safe_message = redact_sensitive(message)
        safe_details = redact_sensitive(details) if details else None

        extra = {'details': safe_details if safe_details else 'No additional details'}
        self.logger.log(level, safe_message, extra=extra)


def mask_api_key(api_key: str) -> str:
    """
    Mask API key for safe display.

    Args:
        api_key: The API key to mask

    Returns:
        Masked API key showing only first and last few characters
    """
    if not api_key or len(api_key) < 8:
        return "[REDACTED]"

    return f"{api_key[:4]}...{api_key[-4:]}"
