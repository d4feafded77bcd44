"""Pytest configuration and fixtures for treebackup tests."""

from datetime import datetime, timedelta

import pytest
from hypothesis import settings, Phase

# Configure hypothesis to use fewer examples for faster test runs
# Disable shrinking phase to speed up tests further
settings.register_profile(
    "fast",
    max_examples=5,
    deadline=10000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate]
)
settings.register_profile("ci", max_examples=50, deadline=10000)

# Use the fast profile by default
settings.load_profile("fast")


class StepClock:
    """Clock that moves forward one second on every call."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, 0)):
        self.current = start

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


@pytest.fixture
def step_clock():
    """A fresh clock so consecutive snapshots never share a name."""
    return StepClock()


@pytest.fixture
def source_dir(tmp_path):
    path = tmp_path / "src"
    path.mkdir()
    return path


@pytest.fixture
def backup_root(tmp_path):
    return tmp_path / "bk"
