"""Configuration management for treebackup.

This module provides dataclasses for configuration and functions for
parsing/formatting TOML configuration files. A configuration file is
optional; every field has a default.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional
import hashlib
import tomllib


class ConfigurationError(Exception):
    """Raised when configuration file is missing or malformed."""
    pass


class ValidationError(Exception):
    """Raised when configuration values have invalid types."""
    pass


# Digest used by earlier releases of the tool; 32 hex characters
DEFAULT_HASH_ALGORITHM = "md5"

# Read size for fingerprinting and copying
DEFAULT_CHUNK_SIZE = 16 * 1024


@dataclass
class BackupConfig:
    """Configuration for change detection and snapshot construction."""
    hash_algorithm: str = DEFAULT_HASH_ALGORITHM
    chunk_size: int = DEFAULT_CHUNK_SIZE
    use_hard_links: bool = True  # False forces a copy for unchanged files
    use_staging: bool = True  # Build under in_progress_* and rename at the end
    preserve_metadata: bool = True  # shutil.copy2 instead of shutil.copyfile


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"  # "DEBUG", "INFO", "WARNING", "ERROR"
    log_file: Path = field(
        default_factory=lambda: Path.home() / ".local/log/treebackup.log"
    )
    error_log_file: Path = field(
        default_factory=lambda: Path.home() / ".local/log/treebackup.err"
    )
    log_max_size_mb: int = 10  # Maximum log file size in MB before rotation
    log_backup_count: int = 5  # Number of rotated log files to keep
    console: bool = False  # Mirror log records to stderr

    @property
    def log_max_bytes(self) -> int:
        """Return max size in bytes for use with RotatingFileHandler."""
        return self.log_max_size_mb * 1024 * 1024


@dataclass
class Configuration:
    """Main configuration for treebackup."""
    source_directory: Optional[Path] = None
    backup_root: Optional[Path] = None
    backup: BackupConfig = field(default_factory=BackupConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# Default config file path
DEFAULT_CONFIG_PATH = Path.home() / ".config/treebackup/config.toml"


def _validate_type(value: Any, expected_type: type, key: str) -> None:
    """Validate that a value has the expected type."""
    # bool is a subclass of int; never accept it where a number is expected
    if expected_type is int and isinstance(value, bool):
        raise ValidationError(
            f"Key '{key}' has invalid type: expected int, got bool"
        )
    if not isinstance(value, expected_type):
        raise ValidationError(
            f"Key '{key}' has invalid type: expected {expected_type.__name__}, "
            f"got {type(value).__name__}"
        )


def _optional_path(value: Any, key: str) -> Optional[Path]:
    if value is None:
        return None
    _validate_type(value, str, key)
    if not value.strip():
        return None
    return Path(value).expanduser()


def _is_fixed_length_digest(name: str) -> bool:
    """True if hashlib knows ``name`` and its digest has a fixed length."""
    if name not in hashlib.algorithms_available:
        return False
    try:
        # SHAKE digests report digest_size 0 and need an explicit length
        return hashlib.new(name).digest_size > 0
    except ValueError:
        return False


def _parse_backup_config(data: Dict[str, Any]) -> BackupConfig:
    """Parse backup configuration from dict."""
    backup_data = data.get("backup", {})

    hash_algorithm = backup_data.get("hash_algorithm", DEFAULT_HASH_ALGORITHM)
    _validate_type(hash_algorithm, str, "backup.hash_algorithm")
    hash_algorithm = hash_algorithm.lower()
    if not _is_fixed_length_digest(hash_algorithm):
        raise ValidationError(
            f"Key 'backup.hash_algorithm' names an unsupported algorithm: '{hash_algorithm}'"
        )

    chunk_size = backup_data.get("chunk_size", DEFAULT_CHUNK_SIZE)
    _validate_type(chunk_size, int, "backup.chunk_size")
    if chunk_size <= 0:
        raise ValidationError("Key 'backup.chunk_size' must be a positive integer")

    use_hard_links = backup_data.get("use_hard_links", True)
    _validate_type(use_hard_links, bool, "backup.use_hard_links")

    use_staging = backup_data.get("use_staging", True)
    _validate_type(use_staging, bool, "backup.use_staging")

    preserve_metadata = backup_data.get("preserve_metadata", True)
    _validate_type(preserve_metadata, bool, "backup.preserve_metadata")

    return BackupConfig(
        hash_algorithm=hash_algorithm,
        chunk_size=chunk_size,
        use_hard_links=use_hard_links,
        use_staging=use_staging,
        preserve_metadata=preserve_metadata,
    )


def _parse_logging_config(data: Dict[str, Any]) -> LoggingConfig:
    """Parse logging configuration from dict."""
    logging_data = data.get("logging", {})

    level = logging_data.get("level", "INFO")
    _validate_type(level, str, "logging.level")

    log_file = logging_data.get(
        "log_file",
        str(Path.home() / ".local/log/treebackup.log")
    )
    _validate_type(log_file, str, "logging.log_file")

    error_log_file = logging_data.get(
        "error_log_file",
        str(Path.home() / ".local/log/treebackup.err")
    )
    _validate_type(error_log_file, str, "logging.error_log_file")

    log_max_size_mb = logging_data.get("log_max_size_mb", 10)
    _validate_type(log_max_size_mb, int, "logging.log_max_size_mb")

    log_backup_count = logging_data.get("log_backup_count", 5)
    _validate_type(log_backup_count, int, "logging.log_backup_count")

    console = logging_data.get("console", False)
    _validate_type(console, bool, "logging.console")

    return LoggingConfig(
        level=level,
        log_file=Path(log_file),
        error_log_file=Path(error_log_file),
        log_max_size_mb=log_max_size_mb,
        log_backup_count=log_backup_count,
        console=console,
    )


def parse_config_string(toml_content: str) -> Configuration:
    """
    Parse TOML string into Configuration object.

    Args:
        toml_content: TOML formatted string

    Returns:
        Configuration object

    Raises:
        ConfigurationError: If the TOML cannot be parsed
        ValidationError: If value has wrong type
    """
    try:
        data = tomllib.loads(toml_content)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML format: {e}")

    main_data = data.get("main", {})
    _validate_type(main_data, dict, "main")

    return Configuration(
        source_directory=_optional_path(
            main_data.get("source_directory"), "main.source_directory"
        ),
        backup_root=_optional_path(main_data.get("backup_root"), "main.backup_root"),
        backup=_parse_backup_config(data),
        logging=_parse_logging_config(data),
    )


def parse_config(config_path: Optional[Path] = None) -> Configuration:
    """
    Parse TOML configuration file into Configuration object.

    When no path is given and the default file does not exist, the
    built-in defaults are returned. An explicitly named file must exist.

    Args:
        config_path: Path to config file. Defaults to ~/.config/treebackup/config.toml

    Returns:
        Configuration object

    Raises:
        ConfigurationError: If an explicit file doesn't exist or can't be read
        ValidationError: If value has wrong type
    """
    if config_path is None:
        if not DEFAULT_CONFIG_PATH.exists():
            return Configuration()
        config_path = DEFAULT_CONFIG_PATH

    if not config_path.exists():
        raise ConfigurationError(
            f"Configuration file not found: {config_path}"
        )

    try:
        content = config_path.read_text(encoding="utf-8")
    except PermissionError:
        raise ConfigurationError(
            f"Permission denied reading configuration file: {config_path}"
        )
    except OSError as e:
        raise ConfigurationError(
            f"Error reading configuration file {config_path}: {e}"
        )

    return parse_config_string(content)


def _escape_toml_string(s: str) -> str:
    """Escape a string for TOML basic string format."""
    # Must escape backslashes first, then quotes
    return s.replace("\\", "\\\\").replace('"', '\\"')


def _toml_bool(value: bool) -> str:
    return "true" if value else "false"


def format_config(config: Configuration) -> str:
    """
    Format Configuration object back to TOML string.

    Args:
        config: Configuration object to format

    Returns:
        TOML formatted string
    """
    lines = []

    lines.append("[main]")
    source = str(config.source_directory) if config.source_directory else ""
    root = str(config.backup_root) if config.backup_root else ""
    lines.append(f'source_directory = "{_escape_toml_string(source)}"')
    lines.append(f'backup_root = "{_escape_toml_string(root)}"')
    lines.append("")

    lines.append("[backup]")
    lines.append(f'hash_algorithm = "{_escape_toml_string(config.backup.hash_algorithm)}"')
    lines.append(f"chunk_size = {config.backup.chunk_size}")
    lines.append(f"use_hard_links = {_toml_bool(config.backup.use_hard_links)}")
    lines.append(f"use_staging = {_toml_bool(config.backup.use_staging)}")
    lines.append(f"preserve_metadata = {_toml_bool(config.backup.preserve_metadata)}")
    lines.append("")

    lines.append("[logging]")
    lines.append(f'level = "{_escape_toml_string(config.logging.level)}"')
    lines.append(f'log_file = "{_escape_toml_string(str(config.logging.log_file))}"')
    lines.append(f'error_log_file = "{_escape_toml_string(str(config.logging.error_log_file))}"')
    lines.append(f"log_max_size_mb = {config.logging.log_max_size_mb}")
    lines.append(f"log_backup_count = {config.logging.log_backup_count}")
    lines.append(f"console = {_toml_bool(config.logging.console)}")

    return "\n".join(lines)


def create_default_config() -> str:
    """
    Generate default configuration TOML for `treebackup init`.

    Returns:
        TOML formatted string with default configuration
    """
    return f'''# treebackup configuration file

[main]
# Optional defaults used when a command omits its paths
source_directory = ""
backup_root = ""

[backup]
# Any algorithm known to hashlib (md5, sha1, sha256, blake2b, ...)
hash_algorithm = "{DEFAULT_HASH_ALGORITHM}"
# Bytes read per chunk while hashing
chunk_size = {DEFAULT_CHUNK_SIZE}
# Hard-link unchanged files from the previous snapshot (falls back to copy)
use_hard_links = true
# Build snapshots under in_progress_backup_* and rename when done
use_staging = true
# Keep modification times and permission bits on copied files
preserve_metadata = true

[logging]
# Log level: DEBUG, INFO, WARNING, ERROR
level = "INFO"
log_file = "~/.local/log/treebackup.log"
error_log_file = "~/.local/log/treebackup.err"
# Log rotation settings
log_max_size_mb = 10
log_backup_count = 5
# Also print log records to stderr
console = false
'''
