"""treebackup - Full and incremental directory snapshots using content hashes and hard links."""

__version__ = "0.1.0"

from treebackup.config import (
    Configuration,
    BackupConfig,
    LoggingConfig,
    ConfigurationError,
    ValidationError,
    parse_config,
    parse_config_string,
    format_config,
    create_default_config,
)
from treebackup.logger import (
    ErrorCode,
    FileIssue,
    LoggingError,
    setup_logging,
    get_logger,
)
from treebackup.fingerprint import ContentFingerprinter, UnreadableError
from treebackup.scanner import Catalog, FileRecord, TreeScanner, relative_path_under
from treebackup.locator import SnapshotError, SnapshotInfo, SnapshotLocator
from treebackup.diff import (
    ChangeStatus,
    ClassificationEntry,
    ClassificationSummary,
    classify,
    deleted_paths,
)
from treebackup.builder import BuildResult, SnapshotBuilder
from treebackup.ledger import HistoryLedger, SnapshotRecord, LEDGER_FILENAME
from treebackup.backup import (
    BackupEngine,
    BackupError,
    BackupResult,
    BackupStatus,
    PreviewResult,
    SourceMissingError,
)

__all__ = [
    "Configuration",
    "BackupConfig",
    "LoggingConfig",
    "ConfigurationError",
    "ValidationError",
    "parse_config",
    "parse_config_string",
    "format_config",
    "create_default_config",
    "ErrorCode",
    "FileIssue",
    "LoggingError",
    "setup_logging",
    "get_logger",
    "ContentFingerprinter",
    "UnreadableError",
    "Catalog",
    "FileRecord",
    "TreeScanner",
    "relative_path_under",
    "SnapshotError",
    "SnapshotInfo",
    "SnapshotLocator",
    "ChangeStatus",
    "ClassificationEntry",
    "ClassificationSummary",
    "classify",
    "deleted_paths",
    "BuildResult",
    "SnapshotBuilder",
    "HistoryLedger",
    "SnapshotRecord",
    "LEDGER_FILENAME",
    "BackupEngine",
    "BackupError",
    "BackupResult",
    "BackupStatus",
    "PreviewResult",
    "SourceMissingError",
]
