"""Property-based tests for BackupEngine snapshots.

Tests that, for any pair of source states:
- A full backup reproduces every file byte for byte
- Unchanged files share an inode with the previous snapshot
- Modified and added files are fresh copies
- Deleted files do not appear in the new snapshot
"""

import os
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Set

from hypothesis import given, settings, HealthCheck
from hypothesis import strategies as st

from treebackup.backup import BackupEngine, BackupStatus


# Strategy for generating valid filenames (no special chars that cause issues)
filename_strategy = st.text(
    alphabet=st.sampled_from("abcdefghijklmnopqrstuvwxyz0123456789_"),
    min_size=1,
    max_size=10,
)

relative_path_strategy = st.one_of(
    filename_strategy,
    st.tuples(filename_strategy, filename_strategy).map(lambda t: f"dir-{t[0]}/{t[1]}"),
)

content_strategy = st.binary(min_size=0, max_size=100)

tree_strategy = st.dictionaries(relative_path_strategy, content_strategy, max_size=8)


class StepClock:
    def __init__(self):
        self.current = datetime(2024, 1, 1)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


def create_file_tree(base_path: Path, files: Dict[str, bytes]) -> None:
    """Create a file tree from a dict of {relative_path: content}."""
    for rel_path, content in files.items():
        file_path = base_path / rel_path
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_bytes(content)


def get_all_files(base_path: Path) -> Set[str]:
    """Get set of all relative file paths in a directory tree."""
    files = set()
    for root, dirs, filenames in os.walk(base_path):
        for f in filenames:
            files.add((Path(root) / f).relative_to(base_path).as_posix())
    return files


class TestFullBackupProperty:

    @given(files=tree_strategy)
    @settings(suppress_health_check=[HealthCheck.too_slow])
    def test_full_backup_reproduces_source(self, files):
        with tempfile.TemporaryDirectory() as tmp:
            source = Path(tmp) / "src"
            backup_root = Path(tmp) / "bk"
            source.mkdir()
            create_file_tree(source, files)

            result = BackupEngine(clock=StepClock()).full_backup(source, backup_root)

            assert result.status is BackupStatus.COMPLETED
            assert get_all_files(result.snapshot_path) == set(files)
            for rel_path, content in files.items():
                assert (result.snapshot_path / rel_path).read_bytes() == content
            assert result.messages[-1] == f"共处理 {len(files)}/{len(files)} 个文件"


class TestIncrementalCorrectnessProperty:

    @given(before=tree_strategy, after=tree_strategy)
    @settings(suppress_health_check=[HealthCheck.too_slow])
    def test_incremental_snapshot_matches_new_state(self, before, after):
        with tempfile.TemporaryDirectory() as tmp:
            source = Path(tmp) / "src"
            backup_root = Path(tmp) / "bk"
            source.mkdir()
            create_file_tree(source, before)

            engine = BackupEngine(clock=StepClock())
            full = engine.full_backup(source, backup_root)

            for rel_path in before:
                if rel_path not in after:
                    (source / rel_path).unlink()
            create_file_tree(source, after)

            result = engine.incremental_backup(source, backup_root)

            changed = {p for p in after if before.get(p) != after[p]}
            if not changed:
                assert result.status is BackupStatus.NO_CHANGES
                return

            assert result.status is BackupStatus.COMPLETED
            snapshot = result.snapshot_path
            assert get_all_files(snapshot) == set(after)
            for rel_path, content in after.items():
                assert (snapshot / rel_path).read_bytes() == content
                new_inode = (snapshot / rel_path).stat().st_ino
                if rel_path in changed:
                    if rel_path in before:
                        assert new_inode != (full.snapshot_path / rel_path).stat().st_ino
                else:
                    assert new_inode == (full.snapshot_path / rel_path).stat().st_ino
            assert result.build.copied == len(changed)

    @given(files=tree_strategy)
    @settings(suppress_health_check=[HealthCheck.too_slow])
    def test_second_incremental_without_changes(self, files):
        with tempfile.TemporaryDirectory() as tmp:
            source = Path(tmp) / "src"
            backup_root = Path(tmp) / "bk"
            source.mkdir()
            create_file_tree(source, files)
            engine = BackupEngine(clock=StepClock())

            engine.incremental_backup(source, backup_root)
            snapshots_before = sorted(backup_root.iterdir())
            result = engine.incremental_backup(source, backup_root)

            assert result.status is BackupStatus.NO_CHANGES
            assert sorted(backup_root.iterdir()) == snapshots_before
