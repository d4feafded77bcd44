"""Logging configuration for treebackup.

This module provides logging setup and utility functions for the backup
engine. Log records go to a main log file, an errors-only file and,
optionally, the console. Rotated files are gzip-compressed.

It also defines the error taxonomy shared by the scanner, the builder and
the orchestrator: every per-file problem is a ``FileIssue`` tagged with an
``ErrorCode`` that maps to user guidance and a status line.
"""

import gzip
import logging
import os
import shutil
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional

from treebackup.config import LoggingConfig


# Logger name for the treebackup package
LOGGER_NAME = "treebackup"

# Default rotation settings
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10MB
DEFAULT_BACKUP_COUNT = 5

# Valid log levels
VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR"}


class ErrorCode(Enum):
    """Error codes for the backup engine's failure taxonomy."""
    # Fatal to an operation
    SOURCE_MISSING = "E1001"

    # Per-file, non-fatal
    UNREADABLE = "E2001"
    LINK_UNSUPPORTED = "E2002"
    COPY_FAILED = "E2003"

    # Outcome, not a failure
    NO_CHANGES = "E3001"

    # Snapshot directory handling
    SNAPSHOT_FAILED = "E4001"

    UNKNOWN_ERROR = "E0001"


ERROR_GUIDANCE: Dict[ErrorCode, str] = {
    ErrorCode.SOURCE_MISSING: "The source directory doesn't exist. Check the path and try again.",
    ErrorCode.UNREADABLE: "A file could not be read and was skipped. Check its permissions.",
    ErrorCode.LINK_UNSUPPORTED: "Hard links are not available here; the file was copied instead.",
    ErrorCode.COPY_FAILED: "A file could not be copied into the snapshot. Check free space and permissions on the backup root.",
    ErrorCode.NO_CHANGES: "Nothing changed since the latest snapshot; no new snapshot was created.",
    ErrorCode.SNAPSHOT_FAILED: "The snapshot directory could not be created. Check permissions on the backup root.",
    ErrorCode.UNKNOWN_ERROR: "An unexpected error occurred. Check the logs for more details.",
}


def get_error_guidance(error_code: ErrorCode) -> str:
    """
    Get troubleshooting guidance for an error code.

    Args:
        error_code: The error code to get guidance for

    Returns:
        Human-readable troubleshooting guidance
    """
    return ERROR_GUIDANCE.get(error_code, ERROR_GUIDANCE[ErrorCode.UNKNOWN_ERROR])


# Status line templates shown to the user, keyed by issue kind
_ISSUE_TEMPLATES: Dict[ErrorCode, str] = {
    ErrorCode.UNREADABLE: "无法处理文件 {path}: {detail}",
    ErrorCode.LINK_UNSUPPORTED: "无法创建硬链接 {path}，已改为复制: {detail}",
    ErrorCode.COPY_FAILED: "无法复制文件 {path}: {detail}",
}


@dataclass(frozen=True)
class FileIssue:
    """A per-file problem met while scanning or building a snapshot."""
    relative_path: str
    code: ErrorCode
    detail: str

    def status_line(self) -> str:
        template = _ISSUE_TEMPLATES.get(self.code, "{path}: {detail}")
        return template.format(path=self.relative_path, detail=self.detail)


class LoggingError(Exception):
    """Raised when logging setup fails."""
    pass


class GzipRotatingFileHandler(RotatingFileHandler):
    """Rotating file handler that gzips each rotated file."""

    def rotation_filename(self, default_name: str) -> str:
        return default_name + ".gz"

    def rotate(self, source: str, dest: str) -> None:
        """
        Compress ``source`` into ``dest`` and remove ``source``.

        If compression fails the file is renamed without the .gz suffix
        so that logging itself never fails because of rotation.
        """
        if not os.path.exists(source):
            return

        try:
            with open(source, 'rb') as f_in:
                with gzip.open(dest, 'wb') as f_out:
                    shutil.copyfileobj(f_in, f_out)
            os.remove(source)
        except OSError:
            if os.path.exists(source):
                fallback_dest = dest[:-3] if dest.endswith('.gz') else dest
                try:
                    os.rename(source, fallback_dest)
                except OSError:
                    pass


def _ensure_log_directory(log_path: Path) -> None:
    """Ensure the parent directory for a log file exists."""
    log_dir = log_path.parent
    if not log_dir.exists():
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LoggingError(f"Failed to create log directory {log_dir}: {e}")


def _get_log_level(level_str: str) -> int:
    """Convert log level string to logging constant."""
    level_str = level_str.upper()
    if level_str not in VALID_LOG_LEVELS:
        raise LoggingError(
            f"Invalid log level '{level_str}'. Must be one of: {', '.join(sorted(VALID_LOG_LEVELS))}"
        )
    return getattr(logging, level_str)


def setup_logging(
    config: Optional[LoggingConfig] = None,
    log_file: Optional[Path] = None,
    error_log_file: Optional[Path] = None,
    level: Optional[str] = None,
    max_bytes: Optional[int] = None,
    backup_count: Optional[int] = None,
    console: Optional[bool] = None,
) -> logging.Logger:
    """
    Configure logging for treebackup.

    Sets up logging with:
    - A rotating file handler for general logs (log_file)
    - A rotating file handler for error logs only (error_log_file)
    - Optional console output
    - Automatic gzip compression of rotated files

    Args:
        config: LoggingConfig object with settings. If provided, other args are ignored.
        log_file: Path to main log file (used if config is None)
        error_log_file: Path to error log file (used if config is None)
        level: Log level string: "DEBUG", "INFO", "WARNING" or "ERROR"
        max_bytes: Maximum log file size before rotation (default 10MB)
        backup_count: Number of rotated files to keep (default 5)
        console: Also log to stderr (default False)

    Returns:
        Configured logger instance

    Raises:
        LoggingError: If log directory cannot be created or level is invalid
    """
    if config is not None:
        log_file = config.log_file
        error_log_file = config.error_log_file
        level = config.level
        max_bytes = config.log_max_bytes
        backup_count = config.log_backup_count
        console = config.console
    else:
        if log_file is None:
            log_file = Path.home() / ".local/log/treebackup.log"
        if error_log_file is None:
            error_log_file = Path.home() / ".local/log/treebackup.err"
        if level is None:
            level = "INFO"
        if max_bytes is None:
            max_bytes = DEFAULT_MAX_BYTES
        if backup_count is None:
            backup_count = DEFAULT_BACKUP_COUNT
        if console is None:
            console = False

    log_file = Path(os.path.expanduser(str(log_file)))
    error_log_file = Path(os.path.expanduser(str(error_log_file)))

    _ensure_log_directory(log_file)
    _ensure_log_directory(error_log_file)

    log_level = _get_log_level(level)

    logger = logging.getLogger(LOGGER_NAME)

    # Close and drop handlers from a previous setup to avoid duplicates
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    # Handlers do the filtering
    logger.setLevel(logging.DEBUG)

    detailed_formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    file_handler = GzipRotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(detailed_formatter)
    logger.addHandler(file_handler)

    error_handler = GzipRotatingFileHandler(
        error_log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(detailed_formatter)
    logger.addHandler(error_handler)

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_handler.setFormatter(detailed_formatter)
        logger.addHandler(console_handler)

    return logger


def get_logger() -> logging.Logger:
    """Return the treebackup package logger."""
    return logging.getLogger(LOGGER_NAME)


def log_backup_start(
    logger: logging.Logger,
    kind: str,
    source: Path,
    backup_root: Path,
) -> None:
    """
    Log the start of a backup operation.

    Args:
        logger: Logger instance
        kind: "full" or "incremental"
        source: Source directory path
        backup_root: Backup root path
    """
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    logger.info(f"{kind.capitalize()} backup started at {timestamp}")
    logger.info(f"Source directory: {source}")
    logger.info(f"Backup root: {backup_root}")


def log_backup_completion(
    logger: logging.Logger,
    duration_seconds: float,
    files_written: int,
    total_files: int,
    snapshot_path: Optional[Path] = None,
) -> None:
    """
    Log the completion of a backup operation.

    Args:
        logger: Logger instance
        duration_seconds: How long the backup took
        files_written: Number of files copied or linked
        total_files: Number of files the snapshot should contain
        snapshot_path: Path to the created snapshot
    """
    logger.info("Backup completed")
    logger.info(f"Duration: {duration_seconds:.2f} seconds")
    logger.info(f"Files written: {files_written}/{total_files}")
    if files_written < total_files:
        logger.warning(f"{total_files - files_written} file(s) could not be written")
    if snapshot_path:
        logger.info(f"Snapshot: {snapshot_path}")


def log_backup_error(
    logger: logging.Logger,
    error: Exception,
    context: Optional[str] = None,
) -> None:
    """
    Log a backup error.

    Args:
        logger: Logger instance
        error: The exception that occurred
        context: Additional context about what was happening
    """
    if context:
        logger.error(f"Backup failed during {context}: {error}")
    else:
        logger.error(f"Backup failed: {error}")


def log_file_issue(logger: logging.Logger, issue: FileIssue) -> None:
    """Log a per-file issue; link fallbacks are routine and go to DEBUG."""
    level = logging.DEBUG if issue.code is ErrorCode.LINK_UNSUPPORTED else logging.WARNING
    logger.log(level, f"[{issue.code.value}] {issue.relative_path}: {issue.detail}")
