"""Tests for concurrent access to the note store.

These tests run operations from several threads at once to verify:
1. Saves to one note are serialized and content matches metadata
2. Creates from many threads get distinct IDs
3. A save racing delete_if_empty never reports success on a deleted note
4. Work on different notes does not wait on each other
"""

import threading
from typing import List

import pytest

from gravity_notes.exceptions import NoteNotFoundError
from gravity_notes.storage.metadata import derive_metadata


class TestConcurrentAccess:
    """Tests for concurrent access patterns."""

    def test_concurrent_saves_to_same_note(self, note_repository):
        meta = note_repository.create()
        contents = [f"Version {i}\n" + "word " * i for i in range(1, 9)]
        errors: List[Exception] = []
        barrier = threading.Barrier(len(contents))

        def save(content: str):
            try:
                barrier.wait()
                for _ in range(5):
                    note_repository.save(meta.id, content)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=save, args=(c,)) for c in contents]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert errors == []
        final = note_repository.get(meta.id)
        assert final in contents

        # Metadata belongs to the content that won the last write
        stored = note_repository.get_meta(meta.id)
        expected = derive_metadata(final)
        assert stored.title == expected.title
        assert stored.word_count == expected.word_count
        assert stored.char_count == expected.char_count
        assert list(note_repository.notes_dir.glob("*.tmp")) == []

    def test_concurrent_creates_get_distinct_ids(self, note_repository):
        ids: List[str] = []
        lock = threading.Lock()
        errors: List[Exception] = []

        def create_many():
            try:
                for _ in range(10):
                    meta = note_repository.create()
                    with lock:
                        ids.append(meta.id)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=create_many) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert errors == []
        assert len(ids) == 50
        assert len(set(ids)) == 50
        assert len(note_repository.list()) == 50

    @pytest.mark.parametrize("attempt", range(10))
    def test_save_racing_delete_if_empty(self, note_repository, lifecycle, attempt):
        meta = note_repository.create()
        outcome = {}
        barrier = threading.Barrier(2)

        def save():
            barrier.wait()
            try:
                note_repository.save(meta.id, "important text")
                outcome["saved"] = True
            except NoteNotFoundError:
                outcome["saved"] = False

        def delete_if_empty():
            barrier.wait()
            outcome["deleted"] = lifecycle.delete_if_empty(meta.id)

        threads = [threading.Thread(target=save), threading.Thread(target=delete_if_empty)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert not (outcome["saved"] and outcome["deleted"])
        if outcome["saved"]:
            assert note_repository.get(meta.id) == "important text"
        else:
            assert not note_repository.exists(meta.id)

    def test_lock_on_one_note_does_not_block_another(self, note_repository):
        held = note_repository.create()
        other = note_repository.create()
        finished = threading.Event()

        def save_other():
            note_repository.save(other.id, "independent")
            finished.set()

        with note_repository.get_note_lock(held.id):
            worker = threading.Thread(target=save_other)
            worker.start()
            assert finished.wait(10)
        worker.join()

        assert note_repository.get(other.id) == "independent"

    def test_lock_on_a_note_blocks_its_save(self, note_repository):
        meta = note_repository.create()
        finished = threading.Event()

        def save():
            note_repository.save(meta.id, "after release")
            finished.set()

        with note_repository.get_note_lock(meta.id):
            worker = threading.Thread(target=save)
            worker.start()
            assert not finished.wait(0.2)
            assert note_repository.get(meta.id) == ""
        worker.join(timeout=10)

        assert finished.is_set()
        assert note_repository.get(meta.id) == "after release"

    def test_note_lock_is_shared_while_held(self, note_repository):
        meta = note_repository.create()
        lock = note_repository.get_note_lock(meta.id)
        assert note_repository.get_note_lock(meta.id) is lock
