"""Snapshot discovery and naming for treebackup.

Snapshots live directly under the backup root in directories named
``backup_YYYYMMDD_HHMMSS`` (local time). The timestamp is fixed-width and
zero-padded, so sorting names lexically sorts snapshots chronologically.
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Tuple
import logging
import os
import re
import stat
import time


logger = logging.getLogger(__name__)


class SnapshotError(Exception):
    """Raised when a snapshot directory cannot be named or created."""
    pass


@dataclass
class SnapshotInfo:
    """Information about a snapshot on disk."""
    path: Path
    timestamp: datetime
    size_bytes: int
    file_count: int

    @property
    def name(self) -> str:
        return self.path.name


class SnapshotLocator:
    """
    Finds, orders and names snapshot directories under a backup root.

    Only the directory names are consulted; the history ledger is never
    read back.
    """

    SNAPSHOT_PREFIX = "backup_"

    # Timestamp format embedded in snapshot directory names
    TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

    # Prefix for snapshots still being built
    IN_PROGRESS_PREFIX = "in_progress_"

    _NAME_PATTERN = re.compile(r"^backup_(\d{8}_\d{6})$")

    # Times to wait for the clock to move past an existing name
    MAX_NAME_RETRIES = 3

    def __init__(
        self,
        backup_root: Path,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the locator.

        Args:
            backup_root: Directory holding the snapshots
            clock: Returns the current local time; defaults to ``datetime.now``
        """
        self.backup_root = Path(backup_root)
        self.clock = clock or datetime.now

    def generate_timestamp(self) -> str:
        """Return the current time as YYYYMMDD_HHMMSS."""
        return self.clock().strftime(self.TIMESTAMP_FORMAT)

    def parse_snapshot_name(self, name: str) -> Optional[datetime]:
        """
        Parse a snapshot directory name.

        Args:
            name: Directory name

        Returns:
            The embedded timestamp, or None if ``name`` is not a snapshot name
        """
        match = self._NAME_PATTERN.match(name)
        if match is None:
            return None
        try:
            return datetime.strptime(match.group(1), self.TIMESTAMP_FORMAT)
        except ValueError:
            return None

    def timestamp_id(self, snapshot_path: Path) -> str:
        """Return the timestamp part of a snapshot directory name."""
        return Path(snapshot_path).name[len(self.SNAPSHOT_PREFIX):]

    def _snapshot_dirs(self) -> List[Tuple[str, Path, datetime]]:
        if not self.backup_root.is_dir():
            return []

        found = []
        for entry in self.backup_root.iterdir():
            if not entry.is_dir() or entry.is_symlink():
                continue
            timestamp = self.parse_snapshot_name(entry.name)
            if timestamp is not None:
                found.append((entry.name, entry, timestamp))
        return found

    def find_latest(self) -> Optional[Path]:
        """
        Find the most recent snapshot directory.

        Staging directories (``in_progress_backup_*``) and anything else not
        matching the naming convention are ignored.

        Returns:
            Path to the latest snapshot, or None if there is none
        """
        snapshots = self._snapshot_dirs()
        if not snapshots:
            return None
        return max(snapshots, key=lambda s: s[0])[1]

    def list_snapshots(self) -> List[SnapshotInfo]:
        """
        List snapshots with their size and file count, most recent first.
        """
        snapshots = []
        for _, path, timestamp in self._snapshot_dirs():
            size_bytes, file_count = self._get_directory_stats(path)
            snapshots.append(SnapshotInfo(
                path=path,
                timestamp=timestamp,
                size_bytes=size_bytes,
                file_count=file_count,
            ))
        snapshots.sort(key=lambda s: s.path.name, reverse=True)
        return snapshots

    def _get_directory_stats(self, path: Path) -> Tuple[int, int]:
        """
        Calculate total size and regular-file count for a directory.

        Symlinks are not followed. Hard-linked files are counted once per
        name, like ``du --count-links``.
        """
        total_size = 0
        file_count = 0
        for root, _, files in os.walk(path, followlinks=False):
            for name in files:
                try:
                    st = os.lstat(os.path.join(root, name))
                except OSError:
                    continue
                if not stat.S_ISREG(st.st_mode):
                    continue
                total_size += st.st_size
                file_count += 1
        return total_size, file_count

    def _name_in_use(self, name: str) -> bool:
        return (
            (self.backup_root / name).exists()
            or (self.backup_root / f"{self.IN_PROGRESS_PREFIX}{name}").exists()
        )

    def next_snapshot_name(self) -> str:
        """
        Name a new snapshot after the current time.

        If a snapshot (or staging directory) for the current second already
        exists, wait for the clock to advance rather than break the naming
        convention with a suffix.

        Raises:
            SnapshotError: If every attempt produced a name already in use
        """
        for attempt in range(self.MAX_NAME_RETRIES + 1):
            name = f"{self.SNAPSHOT_PREFIX}{self.generate_timestamp()}"
            if not self._name_in_use(name):
                return name
            if attempt < self.MAX_NAME_RETRIES:
                logger.debug(f"Snapshot name {name} in use, waiting for the clock")
                time.sleep(1)

        raise SnapshotError(
            f"Could not find a free snapshot name under {self.backup_root}"
        )

    def managed_entries(self) -> List[Path]:
        """
        Snapshot and staging directories currently under the backup root.

        Used to keep them out of a scan when the backup root is also the
        source directory.
        """
        if not self.backup_root.is_dir():
            return []
        entries = []
        for entry in self.backup_root.iterdir():
            name = entry.name
            if name.startswith(self.IN_PROGRESS_PREFIX):
                name = name[len(self.IN_PROGRESS_PREFIX):]
            if self.parse_snapshot_name(name) is not None:
                entries.append(entry)
        return sorted(entries)

    def staging_path(self, name: str) -> Path:
        """Return the in-progress directory used while building ``name``."""
        return self.backup_root / f"{self.IN_PROGRESS_PREFIX}{name}"
