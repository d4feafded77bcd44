"""Directory tree scanning for treebackup.

This module provides the TreeScanner class that walks a directory tree and
builds a Catalog of FileRecord entries, one per regular file, each carrying
the file's content fingerprint.

Symbolic links are never followed and are not recorded; neither are
sockets, FIFOs or device files. Files that cannot be read are reported as
issues on the catalog and the walk continues.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Set
import logging
import os
import stat

from treebackup.fingerprint import ContentFingerprinter, UnreadableError
from treebackup.logger import ErrorCode, FileIssue, log_file_issue


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileRecord:
    """One regular file observed during a scan."""
    relative_path: str  # POSIX separators, relative to the scanned root
    content_digest: str
    size_bytes: int
    modified_time: float


@dataclass
class Catalog:
    """
    The files of one directory tree.

    ``tree_root`` is kept alongside the records so that every record's
    absolute location can be derived without path arithmetic on the
    record itself.
    """
    tree_root: Path
    records: List[FileRecord] = field(default_factory=list)
    issues: List[FileIssue] = field(default_factory=list)

    def __iter__(self) -> Iterator[FileRecord]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)

    def absolute_path(self, record: FileRecord) -> Path:
        """Return where ``record`` lives on disk."""
        return self.tree_root / Path(record.relative_path)

    def index(self) -> Dict[str, FileRecord]:
        """Map relative path to record. Later duplicates win."""
        return {record.relative_path: record for record in self.records}

    @property
    def total_size(self) -> int:
        return sum(record.size_bytes for record in self.records)


def relative_path_under(path: Path, root: Path) -> str:
    """
    Express ``path`` relative to ``root`` with POSIX separators.

    Both the source tree and snapshot trees use this one convention, so a
    file at ``<source>/a/b.txt`` and its copy at ``<snapshot>/a/b.txt``
    produce the same key ``a/b.txt``.

    Raises:
        ValueError: If ``path`` is not located under ``root``
    """
    return Path(path).relative_to(Path(root)).as_posix()


class TreeScanner:
    """
    Builds catalogs of regular files.

    The scanner walks with ``os.walk(followlinks=False)`` and checks each
    entry with ``lstat``, so links pointing at directories or at files
    elsewhere never contribute records.
    """

    def __init__(self, fingerprinter: Optional[ContentFingerprinter] = None):
        self.fingerprinter = fingerprinter or ContentFingerprinter()

    def scan(self, root: Path, exclude: Optional[Iterable[Path]] = None) -> Catalog:
        """
        Scan a directory tree.

        Args:
            root: Directory to scan
            exclude: Directories that are not descended into and files that
                are not recorded

        Returns:
            Catalog rooted at ``root``, records sorted by relative path
        """
        root = Path(root)
        catalog = Catalog(tree_root=root)
        excluded: Set[Path] = {Path(p).resolve() for p in (exclude or [])}

        def on_walk_error(error: OSError) -> None:
            where = Path(error.filename) if error.filename else root
            try:
                rel = relative_path_under(where, root)
            except ValueError:
                rel = str(where)
            issue = FileIssue(rel, ErrorCode.UNREADABLE, error.strerror or str(error))
            catalog.issues.append(issue)
            log_file_issue(logger, issue)

        for dirpath, dirnames, filenames in os.walk(root, onerror=on_walk_error, followlinks=False):
            current = Path(dirpath)
            if excluded:
                dirnames[:] = [
                    d for d in dirnames if (current / d).resolve() not in excluded
                ]
            dirnames.sort()

            for name in sorted(filenames):
                if excluded and (current / name).resolve() in excluded:
                    continue
                record = self._scan_file(current / name, root, catalog)
                if record is not None:
                    catalog.records.append(record)

        catalog.records.sort(key=lambda r: r.relative_path)
        logger.debug(
            f"Scanned {root}: {len(catalog)} file(s), {len(catalog.issues)} skipped"
        )
        return catalog

    def _scan_file(self, path: Path, root: Path, catalog: Catalog) -> Optional[FileRecord]:
        """Fingerprint one entry; return None if it is skipped."""
        rel = relative_path_under(path, root)
        try:
            st = os.lstat(path)
        except OSError as e:
            issue = FileIssue(rel, ErrorCode.UNREADABLE, e.strerror or str(e))
            catalog.issues.append(issue)
            log_file_issue(logger, issue)
            return None

        if not stat.S_ISREG(st.st_mode):
            logger.debug(f"Skipping non-regular file: {rel}")
            return None

        try:
            digest = self.fingerprinter.fingerprint(path)
        except UnreadableError as e:
            issue = FileIssue(rel, ErrorCode.UNREADABLE, e.reason)
            catalog.issues.append(issue)
            log_file_issue(logger, issue)
            return None

        return FileRecord(
            relative_path=rel,
            content_digest=digest,
            size_bytes=st.st_size,
            modified_time=st.st_mtime,
        )
