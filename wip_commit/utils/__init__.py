"""
Utility modules for WIP Commit.

This module contains logging setup, the wall-clock budget helper and small
text helpers shared across the pipeline.
"""

import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from ..exceptions import FileOperationError
from ..security import SecureLogger


class LoggingManager:
    """Configures the `wip_commit` logger: a rotating file log plus stderr."""

    LOGGER_NAME = 'wip_commit'
    MAX_LOG_SIZE = 10 * 1024 * 1024  # 10MB max per file
    RETENTION_DAYS = 30

    def __init__(self, log_path: Optional[str], level: str = "INFO", console_level: int = logging.WARNING):
        """
        Initialize logging manager.

        Args:
            log_path: Directory for log files; None logs to stderr only
            level: Level name for the file log
            console_level: Level for the stderr handler; stdout is reserved for hook output
        """
        self.log_path = Path(log_path).expanduser() if log_path else None
        self.level = getattr(logging, level.upper(), logging.INFO)
        self.console_level = console_level
        self.logger = logging.getLogger(self.LOGGER_NAME)
        self.secure_logger = SecureLogger(self.logger)
        self._setup_logging()

    def _setup_logging(self) -> None:
        """Setup logging configuration with enhanced formatting and log rotation."""
        file_handler = self._create_file_handler() if self.log_path else None

        logger = self.logger
        logger.setLevel(min(self.level, self.console_level) if file_handler else self.console_level)
        logger.propagate = False

        # Re-running setup replaces our own handlers instead of stacking them
        for handler in list(logger.handlers):
            if getattr(handler, '_wip_commit_handler', False):
                logger.removeHandler(handler)
                handler.close()

        console_handler = logging.StreamHandler()
        console_handler.setLevel(self.console_level)
        console_handler.setFormatter(ColoredFormatter('%(message)s'))
        console_handler._wip_commit_handler = True
        logger.addHandler(console_handler)

        if file_handler is None:
            return

        logger.addHandler(file_handler)
        self._cleanup_old_logs()
        logger.debug(f"Logging initialized - log file: {file_handler.baseFilename}",
                     extra={'details': 'System initialization'})

    def _create_file_handler(self) -> logging.FileHandler:
        """
        Create the daily log file handler.

        Raises:
            FileOperationError: If the log directory or file cannot be opened
        """
        try:
            self.log_path.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(self._get_log_file_path(), encoding='utf-8')
        except OSError as e:
            raise FileOperationError(f"Cannot open log file in {self.log_path}: {e}")

        file_handler.setLevel(self.level)
        file_handler.setFormatter(SafeFormatter(
            '%(asctime)s [%(levelname)s] %(name)s: %(message)s\nDetails: %(details)s\n',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        file_handler._wip_commit_handler = True
        return file_handler

    def _get_log_file_path(self) -> Path:
        """Get current log file path with rotation."""
        current_date = datetime.now().strftime("%Y%m%d")
        log_file = self.log_path / f'wip_commit_{current_date}.log'

        if log_file.exists() and log_file.stat().st_size > self.MAX_LOG_SIZE:
            timestamp = datetime.now().strftime("%H%M%S")
            log_file.rename(self.log_path / f'wip_commit_{current_date}_{timestamp}.log')

        return log_file

    def _cleanup_old_logs(self) -> None:
        """Clean up old log files to prevent disk space issues."""
        cutoff_date = time.time() - (self.RETENTION_DAYS * 24 * 60 * 60)
        try:
            for log_file in self.log_path.glob('wip_commit_*.log'):
                if log_file.stat().st_mtime < cutoff_date:
                    log_file.unlink()
                    self.logger.debug(f"Cleaned up old log file: {log_file}")
        except OSError as e:
            # Don't fail if cleanup fails
            self.logger.debug(f"Log cleanup failed: {e}")

    def get_logger(self) -> logging.Logger:
        """Get the configured logger."""
        return self.logger

    def get_secure_logger(self) -> SecureLogger:
        """Get the secure logger wrapper."""
        return self.secure_logger


class SafeFormatter(logging.Formatter):
    """A logging formatter that safely handles missing 'details' field."""

    def format(self, record):
        if not hasattr(record, 'details'):
            record.details = 'No additional details'
        return super().format(record)


class ColoredFormatter(logging.Formatter):
    """Custom log formatter with color support for console output."""

    GREY = "\x1b[38;21m"
    BLUE = "\x1b[38;5;39m"
    YELLOW = "\x1b[38;5;226m"
    RED = "\x1b[38;5;196m"
    BOLD_RED = "\x1b[31;1m"
    RESET = "\x1b[0m"

    def __init__(self, fmt):
        super().__init__()
        self.fmt = fmt
        self.FORMATS = {
            logging.DEBUG: self.GREY + self.fmt + self.RESET,
            logging.INFO: self.BLUE + self.fmt + self.RESET,
            logging.WARNING: self.YELLOW + self.fmt + self.RESET,
            logging.ERROR: self.RED + self.fmt + self.RESET,
            logging.CRITICAL: self.BOLD_RED + self.fmt + self.RESET
        }

    def format(self, record):
        log_fmt = self.FORMATS.get(record.levelno)
        formatter = logging.Formatter(log_fmt)
        return formatter.format(record)


class Deadline:
    """Wall-clock budget shared by every stage of one pipeline run."""

    def __init__(self, budget: float, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.budget = budget
        self.expires_at = clock() + budget

    def remaining(self) -> float:
        """Seconds left, never negative."""
        return max(0.0, self.expires_at - self._clock())

    def expired(self) -> bool:
        return self.remaining() <= 0

    def cap(self, timeout: float) -> float:
        """Limit a per-call timeout to what is left of the budget."""
        return min(timeout, self.remaining())


def truncate_text(text: str, max_length: int = 100, suffix: str = "...") -> str:
    """
    Truncate text to specified length.

    Args:
        text: Text to truncate
        max_length: Maximum length
        suffix: Suffix to add if truncated

    Returns:
        Truncated text
    """
    if not text or len(text) <= max_length:
        return text or ""
    return text[:max(0, max_length - len(suffix))] + suffix
