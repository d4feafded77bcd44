"""Backup orchestration for treebackup.

This module wires the components together:

- full backup: scan the source, copy every file into a new snapshot
- incremental backup: locate the latest snapshot, scan source and base,
  classify, copy what changed and link what did not
- history: the snapshots recorded by this process

Operations return a BackupResult instead of printing. Status lines meant
for the user are collected on the result and, when a reporter callback is
given, passed to it as they are produced.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Tuple
import logging
import time

from treebackup.builder import BuildResult, SnapshotBuilder
from treebackup.config import Configuration
from treebackup.diff import (
    ClassificationEntry,
    ClassificationSummary,
    classify,
    classify_all_new,
    deleted_paths,
)
from treebackup.fingerprint import ContentFingerprinter
from treebackup.ledger import LEDGER_FILENAME, HistoryLedger, SnapshotRecord
from treebackup.locator import SnapshotError, SnapshotInfo, SnapshotLocator
from treebackup.logger import (
    ErrorCode,
    FileIssue,
    log_backup_completion,
    log_backup_error,
    log_backup_start,
)
from treebackup.scanner import Catalog, TreeScanner


logger = logging.getLogger(__name__)


class BackupError(Exception):
    """Base exception for backup errors."""

    def __init__(self, message: str, code: ErrorCode = ErrorCode.UNKNOWN_ERROR):
        super().__init__(message)
        self.code = code


class SourceMissingError(BackupError):
    """Raised when the source directory does not exist."""

    def __init__(self, source: Path):
        super().__init__(f"Source directory does not exist: {source}", ErrorCode.SOURCE_MISSING)
        self.source = source


class BackupStatus(Enum):
    COMPLETED = "completed"
    NO_CHANGES = "no_changes"
    SOURCE_MISSING = "source_missing"
    FAILED = "failed"  # The snapshot directory itself could not be created


@dataclass
class BackupResult:
    """Result of a backup operation."""
    status: BackupStatus
    record: Optional[SnapshotRecord] = None
    build: Optional[BuildResult] = None
    issues: List[FileIssue] = field(default_factory=list)
    messages: List[str] = field(default_factory=list)
    error_message: Optional[str] = None
    fell_back_to_full: bool = False  # Incremental run with no prior snapshot
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.status is BackupStatus.COMPLETED

    @property
    def snapshot_path(self) -> Optional[Path]:
        return self.record.snapshot_path if self.record else None

    def raise_for_status(self) -> None:
        """Raise if the operation failed; NO_CHANGES is not a failure."""
        if self.status is BackupStatus.SOURCE_MISSING:
            raise BackupError(self.error_message or "Source directory does not exist",
                              ErrorCode.SOURCE_MISSING)
        if self.status is BackupStatus.FAILED:
            raise BackupError(self.error_message or "Snapshot creation failed",
                              ErrorCode.SNAPSHOT_FAILED)


@dataclass
class PreviewResult:
    """What an incremental backup would do right now."""
    source: Path
    base_snapshot: Optional[Path]
    classification: List[ClassificationEntry]
    deleted: List[str]
    issues: List[FileIssue] = field(default_factory=list)

    @property
    def summary(self) -> ClassificationSummary:
        return ClassificationSummary.of(self.classification)

    @property
    def to_copy(self) -> List[str]:
        return [e.relative_path for e in self.classification if e.needs_copy]


class BackupEngine:
    """
    Runs full and incremental backups and keeps the in-process history.

    One engine can serve any number of source/backup-root pairs; its
    history covers every snapshot it created.
    """

    def __init__(
        self,
        config: Optional[Configuration] = None,
        clock: Optional[Callable[[], datetime]] = None,
        reporter: Optional[Callable[[str], None]] = None,
        ledger: Optional[HistoryLedger] = None,
    ):
        """
        Initialize the engine.

        Args:
            config: Configuration; defaults are used when omitted
            clock: Local-time source for snapshot names (tests inject one)
            reporter: Called with each status line as it is produced
            ledger: History ledger; a fresh one is created when omitted
        """
        self.config = config or Configuration()
        self.clock = clock
        self.reporter = reporter
        self.ledger = ledger or HistoryLedger()

        backup_config = self.config.backup
        self.scanner = TreeScanner(ContentFingerprinter(
            algorithm=backup_config.hash_algorithm,
            chunk_size=backup_config.chunk_size,
        ))
        self.builder = SnapshotBuilder(
            use_hard_links=backup_config.use_hard_links,
            preserve_metadata=backup_config.preserve_metadata,
        )

    # Public operations

    def full_backup(self, source: Path, backup_root: Path) -> BackupResult:
        """
        Copy every regular file under ``source`` into a new snapshot.

        Returns:
            BackupResult; status SOURCE_MISSING if the source does not exist
        """
        source, backup_root = Path(source), Path(backup_root)
        result = BackupResult(status=BackupStatus.COMPLETED)
        start_time = time.time()
        log_backup_start(logger, "full", source, backup_root)

        if not self._check_source(source, result):
            return result

        self._run_full(source, backup_root, result)
        result.duration_seconds = time.time() - start_time
        self._log_outcome(result)
        return result

    def incremental_backup(self, source: Path, backup_root: Path) -> BackupResult:
        """
        Back up what changed since the latest snapshot.

        Falls back to a full backup when there is no snapshot yet. When
        nothing changed, no snapshot directory is created and the status
        is NO_CHANGES.
        """
        source, backup_root = Path(source), Path(backup_root)
        result = BackupResult(status=BackupStatus.COMPLETED)
        start_time = time.time()
        log_backup_start(logger, "incremental", source, backup_root)

        if not self._check_source(source, result):
            return result

        locator = self._locator(backup_root)
        base = locator.find_latest()
        if base is None:
            self._emit(result, "没有找到之前的备份，将执行完整备份")
            logger.info("No previous snapshot found, running a full backup")
            result.fell_back_to_full = True
            self._run_full(source, backup_root, result)
            result.duration_seconds = time.time() - start_time
            self._log_outcome(result)
            return result

        self._emit(result, f"找到最新备份: {base}")
        self._emit(result, "正在扫描文件变更...")
        source_catalog = self._scan(source, backup_root, result)
        base_catalog = self._scan(base, None, result)

        classification = classify(source_catalog, base_catalog)
        summary = ClassificationSummary.of(classification)
        logger.info(
            f"Classified {summary.total} file(s) against {base.name}: "
            f"{summary.new} new, {summary.changed} changed, {summary.unchanged} unchanged"
        )

        if summary.to_copy == 0:
            result.status = BackupStatus.NO_CHANGES
            self._emit(result, "没有发现需要备份的文件变更!")
            logger.info("No changes since the latest snapshot; nothing written")
            result.duration_seconds = time.time() - start_time
            return result

        self._emit(result, f"正在备份 {summary.to_copy} 个变更文件...")
        self._emit(result, "处理未修改的文件...")
        built = self._materialize(classification, source, backup_root, locator, result, base)
        if built is None:
            return result
        snapshot_path, timestamp_id, build = built

        record = SnapshotRecord(
            timestamp_id=timestamp_id,
            snapshot_path=snapshot_path,
            source_path=source,
            total_source_files=len(source_catalog),
            files_written=build.files_written,
            is_incremental=True,
            base_snapshot_id=base.name,
            changed_files=summary.to_copy,
            changed_written=build.copied,
        )
        self.ledger.record(record)
        result.record = record

        self._emit(result, f"增量备份完成! 保存到: {snapshot_path}")
        self._emit(
            result,
            f"共处理 {build.copied}/{summary.to_copy} 个变更文件"
            f" (快照共 {build.files_written}/{len(source_catalog)} 个文件)",
        )
        result.duration_seconds = time.time() - start_time
        self._log_outcome(result)
        return result

    def list_history(self) -> List[SnapshotRecord]:
        """Snapshots created by this engine, oldest first."""
        return self.ledger.list()

    def preview(self, source: Path, backup_root: Path) -> PreviewResult:
        """
        Classify the source against the latest snapshot without writing.

        Raises:
            SourceMissingError: If the source directory does not exist
        """
        source, backup_root = Path(source), Path(backup_root)
        if not source.is_dir():
            raise SourceMissingError(source)

        base = self._locator(backup_root).find_latest()
        source_catalog = self.scanner.scan(source, exclude=self._excludes(source, backup_root))
        issues = list(source_catalog.issues)
        if base is None:
            return PreviewResult(
                source=source,
                base_snapshot=None,
                classification=classify_all_new(source_catalog),
                deleted=[],
                issues=issues,
            )

        base_catalog = self.scanner.scan(base)
        issues.extend(base_catalog.issues)
        return PreviewResult(
            source=source,
            base_snapshot=base,
            classification=classify(source_catalog, base_catalog),
            deleted=deleted_paths(source_catalog, base_catalog),
            issues=issues,
        )

    def list_snapshots(self, backup_root: Path) -> List[SnapshotInfo]:
        """Snapshots on disk under ``backup_root``, most recent first."""
        return self._locator(Path(backup_root)).list_snapshots()

    # Internals

    def _locator(self, backup_root: Path) -> SnapshotLocator:
        return SnapshotLocator(backup_root, clock=self.clock)

    def _emit(self, result: BackupResult, line: str) -> None:
        result.messages.append(line)
        if self.reporter is not None:
            self.reporter(line)

    def _add_issues(self, result: BackupResult, issues: List[FileIssue]) -> None:
        """
        Record issues and report them.

        Link fallbacks are summarized in one line; their per-file detail
        stays in the log.
        """
        link_fallbacks = 0
        for issue in issues:
            result.issues.append(issue)
            if issue.code is ErrorCode.LINK_UNSUPPORTED:
                link_fallbacks += 1
            else:
                self._emit(result, issue.status_line())
        if link_fallbacks:
            self._emit(result, f"{link_fallbacks} 个文件无法创建硬链接，已改为复制")

    def _check_source(self, source: Path, result: BackupResult) -> bool:
        if source.is_dir():
            return True
        result.status = BackupStatus.SOURCE_MISSING
        result.error_message = f"Source directory does not exist: {source}"
        self._emit(result, "错误：源目录不存在!")
        log_backup_error(logger, SourceMissingError(source), "source validation")
        return False

    def _excludes(self, source: Path, backup_root: Optional[Path]) -> List[Path]:
        """
        Keep the backup root's contents out of a source scan.

        A backup root nested inside the source is skipped whole. When the
        backup root is the source itself, only the snapshots, staging
        directories and the ledger file are skipped.
        """
        if backup_root is None:
            return []
        try:
            source_resolved = source.resolve()
            root_resolved = backup_root.resolve()
        except OSError:
            return []
        if root_resolved == source_resolved:
            managed = self._locator(backup_root).managed_entries()
            return managed + [backup_root / LEDGER_FILENAME]
        if root_resolved.is_relative_to(source_resolved):
            return [backup_root]
        return []

    def _scan(self, root: Path, backup_root: Optional[Path], result: BackupResult) -> Catalog:
        catalog = self.scanner.scan(root, exclude=self._excludes(root, backup_root))
        self._add_issues(result, catalog.issues)
        return catalog

    def _run_full(self, source: Path, backup_root: Path, result: BackupResult) -> None:
        self._emit(result, f"正在扫描源目录: {source}")
        source_catalog = self._scan(source, backup_root, result)

        self._emit(result, "正在复制文件...")
        locator = self._locator(backup_root)
        built = self._materialize(
            classify_all_new(source_catalog), source, backup_root, locator, result
        )
        if built is None:
            return
        snapshot_path, timestamp_id, build = built

        record = SnapshotRecord(
            timestamp_id=timestamp_id,
            snapshot_path=snapshot_path,
            source_path=source,
            total_source_files=len(source_catalog),
            files_written=build.files_written,
            is_incremental=False,
            changed_files=len(source_catalog),
            changed_written=build.copied,
        )
        self.ledger.record(record)
        result.record = record

        self._emit(result, f"备份完成! 保存到: {snapshot_path}")
        self._emit(result, f"共处理 {build.files_written}/{len(source_catalog)} 个文件")

    def _materialize(
        self,
        classification: List[ClassificationEntry],
        source: Path,
        backup_root: Path,
        locator: SnapshotLocator,
        result: BackupResult,
        base: Optional[Path] = None,
    ) -> Optional[Tuple[Path, str, BuildResult]]:
        """
        Create the snapshot directory and fill it.

        With staging enabled the files are written under
        ``in_progress_backup_<ts>`` and the directory is renamed once every
        entry has been handled.

        Returns:
            (snapshot path, timestamp id, build result), or None if the
            directory could not be created (result is marked FAILED)
        """
        try:
            backup_root.mkdir(parents=True, exist_ok=True)
            name = locator.next_snapshot_name()
            final_path = backup_root / name
            work_path = locator.staging_path(name) if self.config.backup.use_staging else final_path
            work_path.mkdir()
        except (OSError, SnapshotError) as e:
            self._fail(result, e)
            return None

        build = self.builder.build(classification, source, work_path, base)
        result.build = build
        self._add_issues(result, build.issues)

        if work_path != final_path:
            try:
                work_path.rename(final_path)
            except OSError as e:
                self._fail(result, e)
                return None

        return final_path, locator.timestamp_id(final_path), build

    def _fail(self, result: BackupResult, error: Exception) -> None:
        result.status = BackupStatus.FAILED
        result.error_message = f"Could not create snapshot directory: {error}"
        self._emit(result, f"错误：无法创建备份目录: {error}")
        log_backup_error(logger, error, "snapshot creation")

    def _log_outcome(self, result: BackupResult) -> None:
        if result.record is None:
            return
        log_backup_completion(
            logger,
            duration_seconds=result.duration_seconds,
            files_written=result.record.files_written,
            total_files=result.record.total_source_files,
            snapshot_path=result.record.snapshot_path,
        )
