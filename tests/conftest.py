"""Shared test fixtures."""

from pathlib import Path

import pytest

from cadence.scheduler.store import StateStore, TaskStore


@pytest.fixture
async def store(tmp_path: Path) -> TaskStore:
    """Create a loaded TaskStore backed by a temp database."""
    s = TaskStore(db_path=tmp_path / "test.db")
    await s.load()
    return s


@pytest.fixture
def state(tmp_path: Path) -> StateStore:
    return StateStore(db_path=tmp_path / "test.db")
