"""Common test fixtures for the Gravity notes engine."""

import datetime
import tempfile
from datetime import timezone
from pathlib import Path

import pytest

from gravity_notes.config import config
from gravity_notes.services.lifecycle import LifecycleManager
from gravity_notes.services.note_service import NoteService
from gravity_notes.storage.note_repository import NoteRepository


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime.datetime = None):
        self.now = start or datetime.datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, **kwargs) -> datetime.datetime:
        self.now += datetime.timedelta(**kwargs)
        return self.now


@pytest.fixture
def temp_dirs():
    """Create temporary directories for notes and the index database."""
    with tempfile.TemporaryDirectory() as notes_dir:
        with tempfile.TemporaryDirectory() as db_dir:
            yield Path(notes_dir), Path(db_dir)


@pytest.fixture
def test_config(temp_dirs, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    notes_dir, db_dir = temp_dirs
    monkeypatch.setattr(config, "notes_dir", notes_dir)
    monkeypatch.setattr(config, "database_path", db_dir / "test_index.db")
    monkeypatch.setattr(config, "in_memory_db", True)
    yield config


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def note_repository(test_config, clock):
    """Create a test note repository with an in-memory index."""
    yield NoteRepository(notes_dir=test_config.notes_dir, in_memory_db=True, clock=clock)


@pytest.fixture
def lifecycle(note_repository, clock):
    yield LifecycleManager(note_repository, clock=clock)


@pytest.fixture
def note_service(note_repository, lifecycle):
    """Create a test NoteService."""
    yield NoteService(repository=note_repository, lifecycle=lifecycle)
