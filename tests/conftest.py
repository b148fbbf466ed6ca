"""Shared test fixtures for dashsync tests."""

import asyncio
from pathlib import Path

import pytest

from dashsync.store import MemoryDocumentStore


class RecordingStore(MemoryDocumentStore):
    """Memory store that remembers every write and delete it was asked for."""

    def __init__(self, latency: float = 0.0):
        super().__init__(latency=latency)
        self.writes = []
        self.deletes = []

    async def write(self, key, value):
        self.writes.append(key)
        await super().write(key, value)

    async def delete(self, key):
        self.deletes.append(key)
        await super().delete(key)


@pytest.fixture
def recording_store():
    return RecordingStore()


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "dashsync.db")


@pytest.fixture
def write_config(tmp_path):
    """Write a YAML config file and return its path."""
    def _write(text: str) -> str:
        path = Path(tmp_path) / "config.yaml"
        path.write_text(text)
        return str(path)
    return _write


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """No DASHSYNC_* overrides and no real ~/.config lookup."""
    for var in ("DASHSYNC_BACKEND", "DASHSYNC_USER", "DASHSYNC_DB"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    return monkeypatch


def run(coro):
    return asyncio.run(coro)
