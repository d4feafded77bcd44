"""Backup history for treebackup.

Completed snapshots are kept in an in-memory list for the running process
and appended, one line each, to ``backup_history.txt`` at the backup root.
The file is a human-readable audit trail; it is never read back.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional
import logging


logger = logging.getLogger(__name__)

LEDGER_FILENAME = "backup_history.txt"


@dataclass(frozen=True)
class SnapshotRecord:
    """Metadata for one completed snapshot."""
    timestamp_id: str
    snapshot_path: Path
    source_path: Path
    total_source_files: int
    files_written: int  # Copies and links that succeeded
    is_incremental: bool
    base_snapshot_id: Optional[str] = None  # Set iff is_incremental
    changed_files: int = 0  # NEW + CHANGED entries
    changed_written: int = 0  # Of those, how many were copied

    @property
    def backup_root(self) -> Path:
        return self.snapshot_path.parent

    @property
    def kind(self) -> str:
        return "incremental" if self.is_incremental else "full"


def format_ledger_line(record: SnapshotRecord) -> str:
    """Render the ledger line for a record, without the trailing newline."""
    if record.is_incremental:
        return (
            f"{record.timestamp_id}: 增量备份自 {record.source_path} "
            f"(共 {record.changed_written}/{record.changed_files} 变更文件)"
        )
    return (
        f"{record.timestamp_id}: 备份自 {record.source_path} "
        f"(共 {record.files_written}/{record.total_source_files} 文件)"
    )


class HistoryLedger:
    """In-memory snapshot history plus an append-only ledger file per backup root."""

    def __init__(self):
        self._records: List[SnapshotRecord] = []

    def record(self, entry: SnapshotRecord) -> None:
        """
        Remember a completed snapshot and append its ledger line.

        A ledger file that cannot be written is logged; the in-memory
        history is updated regardless.
        """
        self._records.append(entry)

        ledger_path = entry.backup_root / LEDGER_FILENAME
        try:
            with open(ledger_path, "a", encoding="utf-8") as f:
                f.write(format_ledger_line(entry) + "\n")
        except OSError as e:
            logger.warning(f"Could not append to {ledger_path}: {e}")

    def list(self) -> List[SnapshotRecord]:
        """Return recorded snapshots, oldest first."""
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)
