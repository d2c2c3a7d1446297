"""Derivation of note metadata from raw content.

Everything here is a pure function of the note text: the same content
always yields the same title, preview and counts, and nothing depends on
previously derived metadata.
"""
import hashlib
from dataclasses import dataclass
from typing import List

UNTITLED = "Untitled"
TRUNCATION_MARKER = "..."

DEFAULT_TITLE_MAX_LENGTH = 50
DEFAULT_PREVIEW_MAX_LENGTH = 800
DEFAULT_PREVIEW_MAX_LINES = 15


@dataclass(frozen=True)
class DerivedMetadata:
    """The content-dependent part of a NoteMeta.

    Attributes:
        title: First non-empty line without leading ``#`` marks, or "Untitled".
        preview: Non-empty lines following the title (the title line itself
            for a single-line note), truncated.
        word_count: Number of maximal whitespace-delimited tokens.
        char_count: Number of Unicode code points in the content.
    """

    title: str
    preview: str
    word_count: int
    char_count: int


def is_note_empty(content: str) -> bool:
    """A note is empty when nothing but whitespace remains after trimming."""
    return not content.strip()


def content_hash(content: str) -> str:
    """SHA-256 hex digest of the UTF-8 encoded content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def _truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - len(TRUNCATION_MARKER)] + TRUNCATION_MARKER


def _non_empty_lines(content: str) -> List[str]:
    return [line for line in content.splitlines() if line.strip()]


def extract_title(content: str, max_length: int = DEFAULT_TITLE_MAX_LENGTH) -> str:
    lines = _non_empty_lines(content)
    if not lines:
        return UNTITLED
    title = lines[0].strip().lstrip("#").strip()
    if not title:
        return UNTITLED
    return _truncate(title, max_length)


def extract_preview(
    content: str,
    max_length: int = DEFAULT_PREVIEW_MAX_LENGTH,
    max_lines: int = DEFAULT_PREVIEW_MAX_LINES,
) -> str:
    """Leading text of the note with the title line removed.

    A single-line note has nothing after its title, so the line itself
    is the preview.
    """
    lines = _non_empty_lines(content)
    body = lines[1:] if len(lines) > 1 else lines
    preview = "\n".join(body[:max_lines]).strip()
    return _truncate(preview, max_length)


def count_words(content: str) -> int:
    return len(content.split())


def derive_metadata(
    content: str,
    title_max_length: int = DEFAULT_TITLE_MAX_LENGTH,
    preview_max_length: int = DEFAULT_PREVIEW_MAX_LENGTH,
    preview_max_lines: int = DEFAULT_PREVIEW_MAX_LINES,
) -> DerivedMetadata:
    """Compute title, preview and counts for a note body.

    ``char_count`` counts code points (``len`` of the decoded text), not
    UTF-8 bytes, so "héllo" has five characters.

    Args:
        content: The raw note text.
        title_max_length: Longest title kept before truncating with "...".
        preview_max_length: Longest preview kept before truncating with "...".
        preview_max_lines: Number of non-empty lines gathered for the preview.

    Returns:
        DerivedMetadata for the content.
    """
    return DerivedMetadata(
        title=extract_title(content, title_max_length),
        preview=extract_preview(content, preview_max_length, preview_max_lines),
        word_count=count_words(content),
        char_count=len(content),
    )
