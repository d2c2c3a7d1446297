"""Tests for failure recovery and robustness.

These tests verify a failed write leaves the store as it was:
1. The previous content stays readable
2. The previous metadata stays listed
3. No staging files are left behind
"""

from unittest.mock import patch

import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from gravity_notes.exceptions import ErrorCode, StorageError


def _staging_files(repo):
    return list(repo.notes_dir.glob("*.tmp"))


class TestSaveFailures:
    """A save that fails keeps the previously committed content and metadata."""

    def test_rename_failure_keeps_previous_state(self, note_repository, clock):
        meta = note_repository.create()
        before = note_repository.save(meta.id, "Original\ntext")
        clock.advance(minutes=1)

        with patch(
            "gravity_notes.storage.note_repository.os.replace",
            side_effect=PermissionError("read-only"),
        ):
            with pytest.raises(StorageError) as exc_info:
                note_repository.save(meta.id, "Replacement")

        assert exc_info.value.code == ErrorCode.STORAGE_WRITE_FAILED
        assert note_repository.get(meta.id) == "Original\ntext"
        assert note_repository.get_meta(meta.id) == before
        assert _staging_files(note_repository) == []

    def test_stage_failure_keeps_previous_state(self, note_repository):
        meta = note_repository.create()
        note_repository.save(meta.id, "Original")

        with patch(
            "gravity_notes.storage.note_repository.os.fsync",
            side_effect=OSError("disk full"),
        ):
            with pytest.raises(StorageError):
                note_repository.save(meta.id, "Replacement")

        assert note_repository.get(meta.id) == "Original"
        assert note_repository.get_meta(meta.id).title == "Original"
        assert _staging_files(note_repository) == []

    def test_index_commit_failure_restores_content(self, note_repository, clock):
        meta = note_repository.create()
        before = note_repository.save(meta.id, "Original")
        clock.advance(minutes=1)

        with patch.object(Session, "commit", side_effect=SQLAlchemyError("locked")):
            with pytest.raises(StorageError):
                note_repository.save(meta.id, "Replacement")

        assert note_repository.get(meta.id) == "Original"
        [listed] = note_repository.list()
        assert listed.title == "Original"
        assert listed.modified_at == before.modified_at


class TestDeleteFailures:
    """A delete that fails leaves the note in place."""

    def test_remove_failure_keeps_note(self, note_repository):
        meta = note_repository.create()
        note_repository.save(meta.id, "Still here")

        with patch(
            "gravity_notes.storage.note_repository.os.remove",
            side_effect=PermissionError("busy"),
        ):
            with pytest.raises(StorageError) as exc_info:
                note_repository.delete(meta.id)

        assert exc_info.value.code == ErrorCode.STORAGE_DELETE_FAILED
        assert note_repository.get(meta.id) == "Still here"
        assert [n.id for n in note_repository.list()] == [meta.id]

    def test_index_commit_failure_restores_file(self, note_repository):
        meta = note_repository.create()
        note_repository.save(meta.id, "Keep me")

        with patch.object(Session, "commit", side_effect=SQLAlchemyError("locked")):
            with pytest.raises(StorageError):
                note_repository.delete(meta.id)

        assert note_repository.get(meta.id) == "Keep me"
        assert [n.id for n in note_repository.list()] == [meta.id]


class TestCreateFailures:
    """A create that fails leaves nothing behind."""

    def test_file_create_failure(self, note_repository):
        with patch(
            "gravity_notes.storage.note_repository.open",
            side_effect=PermissionError("denied"),
            create=True,
        ):
            with pytest.raises(StorageError):
                note_repository.create()

        assert note_repository.list() == []
        assert list(note_repository.notes_dir.iterdir()) == []

    def test_index_failure_removes_file(self, note_repository):
        with patch.object(Session, "commit", side_effect=SQLAlchemyError("locked")):
            with pytest.raises(StorageError):
                note_repository.create()

        assert note_repository.list() == []
        assert list(note_repository.notes_dir.iterdir()) == []


def test_storage_error_hides_full_path(note_repository):
    meta = note_repository.create()
    with patch(
        "gravity_notes.storage.note_repository.os.remove",
        side_effect=PermissionError("busy"),
    ):
        with pytest.raises(StorageError) as exc_info:
            note_repository.delete(meta.id)

    details = exc_info.value.to_dict()["details"]
    assert details["operation"] == "delete"
    assert details["path_hint"] == f"{meta.id}.md"
    assert str(note_repository.notes_dir) not in str(exc_info.value)
