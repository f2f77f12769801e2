"""Shared test fixtures."""

from pathlib import Path

import pytest

from clawagent.memory.store import MemoryStore


@pytest.fixture
async def store(tmp_path: Path) -> MemoryStore:
    """A MemoryStore backed by a fresh database file."""
    s = MemoryStore(db_path=tmp_path / "memory.db")
    await s.open()
    yield s
    await s.drain()
