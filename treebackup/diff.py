"""Change classification between a source tree and a snapshot.

Every file in the source catalog is classified against the base snapshot's
catalog purely by content digest:

- NEW: no file with the same relative path exists in the base
- CHANGED: a file exists but its digest differs
- UNCHANGED: a file exists with the same digest; it can be hard-linked

Size and modification time are not consulted. Files present only in the
base are not part of the classification, so they are simply not carried
into the next snapshot.
"""

from collections import Counter
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional

from treebackup.scanner import Catalog


class ChangeStatus(Enum):
    NEW = "new"
    CHANGED = "changed"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class ClassificationEntry:
    """The copy-or-link decision for one source file."""
    relative_path: str
    status: ChangeStatus
    base_path: Optional[Path] = None  # Set only for UNCHANGED

    @property
    def needs_copy(self) -> bool:
        return self.status is not ChangeStatus.UNCHANGED


@dataclass
class ClassificationSummary:
    new: int = 0
    changed: int = 0
    unchanged: int = 0

    @property
    def to_copy(self) -> int:
        return self.new + self.changed

    @property
    def total(self) -> int:
        return self.new + self.changed + self.unchanged

    @classmethod
    def of(cls, entries: Iterable[ClassificationEntry]) -> "ClassificationSummary":
        counts = Counter(entry.status for entry in entries)
        return cls(
            new=counts[ChangeStatus.NEW],
            changed=counts[ChangeStatus.CHANGED],
            unchanged=counts[ChangeStatus.UNCHANGED],
        )


def classify(source: Catalog, base: Catalog) -> List[ClassificationEntry]:
    """
    Classify each source file against the base snapshot.

    Both catalogs key their records by path relative to their own
    ``tree_root``, so matching is a plain dictionary lookup and the input
    order of either catalog does not matter.

    Args:
        source: Catalog of the tree being backed up
        base: Catalog of the most recent snapshot

    Returns:
        One entry per source record, in source order
    """
    base_index = base.index()
    entries: List[ClassificationEntry] = []

    for record in source:
        match = base_index.get(record.relative_path)
        if match is None:
            entries.append(ClassificationEntry(record.relative_path, ChangeStatus.NEW))
        elif match.content_digest != record.content_digest:
            entries.append(ClassificationEntry(record.relative_path, ChangeStatus.CHANGED))
        else:
            entries.append(ClassificationEntry(
                record.relative_path,
                ChangeStatus.UNCHANGED,
                base_path=base.absolute_path(match),
            ))

    return entries


def classify_all_new(source: Catalog) -> List[ClassificationEntry]:
    """Classification used by a full backup: everything is copied."""
    return [ClassificationEntry(record.relative_path, ChangeStatus.NEW) for record in source]


def deleted_paths(source: Catalog, base: Catalog) -> List[str]:
    """Relative paths present in the base snapshot but gone from the source."""
    present = {record.relative_path for record in source}
    return sorted(record.relative_path for record in base if record.relative_path not in present)
