"""Tests for the data models and ID helpers."""
import datetime
from datetime import timezone

import pydantic
import pytest

from gravity_notes.models.schema import (
    NoteMeta,
    created_at_from_id,
    ensure_timezone_aware,
    generate_id,
    validate_safe_path_component,
)


class TestGenerateId:
    """Tests for timestamp-based note IDs."""

    def test_format(self):
        now = datetime.datetime(2025, 6, 7, 8, 9, 10, 123456, tzinfo=timezone.utc)
        note_id = generate_id(now)
        assert len(note_id) == 27
        assert note_id.startswith("20250607T080910123456")
        assert note_id[21:].isdigit()

    def test_same_instant_gives_distinct_ids(self):
        now = datetime.datetime(2025, 6, 7, 8, 9, 10, tzinfo=timezone.utc)
        ids = [generate_id(now) for _ in range(100)]
        assert len(set(ids)) == 100

    def test_ids_sort_by_creation_time(self):
        earlier = generate_id(datetime.datetime(2025, 1, 1, tzinfo=timezone.utc))
        later = generate_id(datetime.datetime(2025, 1, 2, tzinfo=timezone.utc))
        assert earlier < later

    def test_non_utc_time_is_converted(self):
        plus_two = timezone(datetime.timedelta(hours=2))
        note_id = generate_id(datetime.datetime(2025, 1, 1, 14, 0, tzinfo=plus_two))
        assert note_id.startswith("20250101T120000")

    def test_creation_time_round_trips(self):
        now = datetime.datetime(2025, 6, 7, 8, 9, 10, 500, tzinfo=timezone.utc)
        assert created_at_from_id(generate_id(now)) == now

    @pytest.mark.parametrize("note_id", ["custom-id", "2025", "20251399T999999000000000000"])
    def test_foreign_ids_have_no_creation_time(self, note_id):
        assert created_at_from_id(note_id) is None


class TestSafePathComponent:
    """Tests for ID validation."""

    @pytest.mark.parametrize("value", ["abc", "20250101T000000000000000000", "a_b-c"])
    def test_valid(self, value):
        assert validate_safe_path_component(value) == value

    @pytest.mark.parametrize("value", ["", "..", "a/b", "a\\b", "a.b", "ä"])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            validate_safe_path_component(value)


def test_naive_datetimes_are_treated_as_utc():
    naive = datetime.datetime(2025, 1, 1, 12)
    assert ensure_timezone_aware(naive).tzinfo == timezone.utc


class TestNoteMeta:
    """Tests for the NoteMeta model."""

    def test_timestamps_become_utc_aware(self):
        meta = NoteMeta(
            id="abc",
            path="/notes/abc.md",
            title="Untitled",
            created_at=datetime.datetime(2025, 1, 1),
            modified_at=datetime.datetime(2025, 1, 1),
        )
        assert meta.created_at.tzinfo == timezone.utc
        assert meta.word_count == 0

    def test_rejects_unsafe_id(self):
        with pytest.raises(pydantic.ValidationError):
            NoteMeta(id="../x", path="p", title="t")

    def test_rejects_negative_counts(self):
        with pytest.raises(pydantic.ValidationError):
            NoteMeta(id="abc", path="p", title="t", word_count=-1)

    def test_rejects_unknown_fields(self):
        with pytest.raises(pydantic.ValidationError):
            NoteMeta(id="abc", path="p", title="t", tags=["x"])
