"""Tests for metadata derivation and the emptiness predicate."""

import pytest

from gravity_notes.storage.metadata import (
    UNTITLED,
    DerivedMetadata,
    content_hash,
    count_words,
    derive_metadata,
    extract_preview,
    extract_title,
    is_note_empty,
)


class TestTitle:
    """Tests for title extraction."""

    def test_first_line_is_title(self):
        assert extract_title("Shopping list\nmilk\neggs") == "Shopping list"

    def test_leading_blank_lines_are_skipped(self):
        assert extract_title("\n\n   \n  Real title  \nbody") == "Real title"

    def test_heading_marks_are_stripped(self):
        assert extract_title("## Weekly review\ntext") == "Weekly review"

    def test_empty_content_is_untitled(self):
        assert extract_title("") == UNTITLED
        assert extract_title("   \n\t\n") == UNTITLED

    def test_bare_heading_marks_are_untitled(self):
        assert extract_title("###\nbody") == UNTITLED

    def test_long_title_is_truncated(self):
        title = extract_title("x" * 60)
        assert len(title) == 50
        assert title == "x" * 47 + "..."

    def test_title_at_limit_is_kept(self):
        assert extract_title("y" * 50) == "y" * 50


class TestPreview:
    """Tests for preview extraction."""

    def test_title_line_is_not_repeated(self):
        assert extract_preview("Title\n\nLine one\nLine two") == "Line one\nLine two"

    def test_single_line_is_its_own_preview(self):
        assert extract_preview("Just a title") == "Just a title"
        assert extract_preview("\n   Just a title   \n\n") == "Just a title"

    def test_single_long_line_is_truncated(self):
        preview = extract_preview("b" * 900)
        assert preview == "b" * 797 + "..."

    def test_empty_content_has_empty_preview(self):
        assert extract_preview("") == ""
        assert extract_preview(" \n\t") == ""

    def test_blank_lines_are_dropped(self):
        assert extract_preview("Title\n\n\nA\n\n\nB\n") == "A\nB"

    def test_preview_is_limited_in_lines(self):
        content = "Title\n" + "\n".join(f"line {i}" for i in range(30))
        preview = extract_preview(content, max_lines=15)
        assert preview.splitlines() == [f"line {i}" for i in range(15)]

    def test_long_preview_is_truncated_with_marker(self):
        preview = extract_preview("Title\n" + "a" * 1000)
        assert len(preview) == 800
        assert preview.endswith("...")


class TestCounts:
    """Tests for word and character counts."""

    @pytest.mark.parametrize(
        "content,expected",
        [
            ("", 0),
            ("   ", 0),
            ("hello", 1),
            ("Hello world", 2),
            ("  hello   world \n foo\tbar ", 4),
        ],
    )
    def test_word_count(self, content, expected):
        assert count_words(content) == expected

    def test_char_count_uses_code_points(self):
        meta = derive_metadata("héllo wörld")
        assert meta.char_count == 11

    def test_char_count_includes_whitespace(self):
        assert derive_metadata(" a \n").char_count == 4


class TestDeriveMetadata:
    """Tests for the combined derivation."""

    def test_empty_content(self):
        assert derive_metadata("") == DerivedMetadata(
            title="Untitled", preview="", word_count=0, char_count=0
        )

    def test_hello_world(self):
        assert derive_metadata("Hello world") == DerivedMetadata(
            title="Hello world", preview="Hello world", word_count=2, char_count=11
        )

    def test_derivation_is_deterministic(self):
        content = "# Plan\n\n- step one\n- step two\n"
        results = {derive_metadata(content) for _ in range(5)}
        assert len(results) == 1

    def test_custom_limits(self):
        meta = derive_metadata(
            "A long title here\nbody text that goes on",
            title_max_length=10,
            preview_max_length=8,
        )
        assert meta.title == "A long ..."
        assert meta.preview == "body ..."


class TestEmptiness:
    """Tests for the emptiness predicate."""

    @pytest.mark.parametrize("content", ["", " ", "\n\n", "\t \r\n", "　"])
    def test_whitespace_only_is_empty(self, content):
        assert is_note_empty(content)

    @pytest.mark.parametrize("content", ["a", "  .  ", "\n#\n"])
    def test_any_visible_character_is_not_empty(self, content):
        assert not is_note_empty(content)

    def test_empty_iff_no_words(self):
        for content in ["", "  ", "x", " x ", " "]:
            assert is_note_empty(content) == (count_words(content) == 0)


def test_content_hash_is_stable():
    assert content_hash("abc") == content_hash("abc")
    assert content_hash("abc") != content_hash("abc ")
    assert len(content_hash("")) == 64
