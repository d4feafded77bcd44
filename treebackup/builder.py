"""Snapshot materialization for treebackup.

The SnapshotBuilder turns a classification into files on disk:

- NEW and CHANGED files are copied from the source tree
- UNCHANGED files are hard-linked from the base snapshot, or copied from
  it when a link cannot be made (different device, no link support, any
  other OS refusal)

A file that cannot be written is reported and skipped; the build carries
on. Nothing is rolled back.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Union
import logging
import os
import shutil

from treebackup.diff import ChangeStatus, ClassificationEntry
from treebackup.logger import ErrorCode, FileIssue, log_file_issue


logger = logging.getLogger(__name__)


@dataclass
class BuildResult:
    """Outcome of building one snapshot directory."""
    total: int = 0
    copied: int = 0  # NEW/CHANGED files copied from the source
    linked: int = 0  # UNCHANGED files hard-linked from the base
    reused_by_copy: int = 0  # UNCHANGED files copied from the base
    issues: List[FileIssue] = field(default_factory=list)

    @property
    def files_written(self) -> int:
        return self.copied + self.linked + self.reused_by_copy

    @property
    def failed(self) -> int:
        return self.total - self.files_written


class SnapshotBuilder:
    """Copies and links files into a new snapshot directory."""

    def __init__(self, use_hard_links: bool = True, preserve_metadata: bool = True):
        """
        Args:
            use_hard_links: Link unchanged files; when False they are copied
            preserve_metadata: Copy with ``shutil.copy2`` rather than ``copyfile``
        """
        self.use_hard_links = use_hard_links
        self.preserve_metadata = preserve_metadata

    def build(
        self,
        classification: Iterable[ClassificationEntry],
        source_root: Path,
        new_snapshot_root: Path,
        base_snapshot_root: Optional[Path] = None,
    ) -> BuildResult:
        """
        Materialize a snapshot.

        Args:
            classification: Decisions produced by the diff engine
            source_root: Tree the NEW/CHANGED files are copied from
            new_snapshot_root: Directory being filled
            base_snapshot_root: Previous snapshot, used for UNCHANGED entries
                that carry no ``base_path``

        Returns:
            BuildResult with per-kind counts and the issues met
        """
        source_root = Path(source_root)
        new_snapshot_root = Path(new_snapshot_root)
        result = BuildResult()

        for entry in classification:
            result.total += 1
            dest = new_snapshot_root / Path(entry.relative_path)

            try:
                dest.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                self._report(result, entry.relative_path, ErrorCode.COPY_FAILED, e)
                continue

            if entry.status is not ChangeStatus.UNCHANGED:
                error = self._copy(source_root / Path(entry.relative_path), dest)
                if error is None:
                    result.copied += 1
                else:
                    self._report(result, entry.relative_path, ErrorCode.COPY_FAILED, error)
                continue

            base_file = entry.base_path
            if base_file is None and base_snapshot_root is not None:
                base_file = Path(base_snapshot_root) / Path(entry.relative_path)
            if base_file is None:
                self._report(
                    result, entry.relative_path, ErrorCode.COPY_FAILED,
                    "no base snapshot to take the unchanged file from",
                )
                continue

            if self.use_hard_links:
                link_error = self._try_link(base_file, dest)
                if link_error is None:
                    result.linked += 1
                    continue
                self._report(result, entry.relative_path, ErrorCode.LINK_UNSUPPORTED, link_error)

            error = self._copy(base_file, dest)
            if error is None:
                result.reused_by_copy += 1
            else:
                self._report(result, entry.relative_path, ErrorCode.COPY_FAILED, error)

        logger.debug(
            f"Built {new_snapshot_root}: {result.copied} copied, {result.linked} linked, "
            f"{result.reused_by_copy} reused by copy, {result.failed} failed"
        )
        return result

    def _report(
        self,
        result: BuildResult,
        relative_path: str,
        code: ErrorCode,
        error: Union[OSError, str],
    ) -> None:
        if isinstance(error, OSError):
            detail = error.strerror or str(error)
        else:
            detail = str(error)
        issue = FileIssue(relative_path, code, detail)
        result.issues.append(issue)
        log_file_issue(logger, issue)

    @staticmethod
    def _clear(dest: Path) -> None:
        # Never write through an existing name: it may share an inode with
        # a file in an older snapshot.
        if os.path.lexists(dest):
            dest.unlink()

    def _try_link(self, target: Path, dest: Path) -> Optional[OSError]:
        """
        Hard-link ``dest`` to ``target``.

        Returns:
            None if the link was made, otherwise the OS error explaining why not
        """
        try:
            self._clear(dest)
            os.link(target, dest)
        except OSError as e:
            return e
        return None

    def _copy(self, source: Path, dest: Path) -> Optional[OSError]:
        """
        Copy ``source`` to ``dest``, replacing any existing file.

        A partially written destination is removed again on failure.

        Returns:
            None on success, otherwise the OS error
        """
        try:
            self._clear(dest)
            if self.preserve_metadata:
                shutil.copy2(source, dest)
            else:
                shutil.copyfile(source, dest)
        except OSError as e:
            try:
                if os.path.lexists(dest):
                    dest.unlink()
            except OSError:
                logger.debug(f"Could not remove partial copy {dest}")
            return e
        return None
