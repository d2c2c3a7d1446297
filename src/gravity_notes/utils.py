"""Utility functions for the Gravity notes engine."""

import unicodedata

# Characters that are illegal in file names on at least one major platform
_FORBIDDEN_FILENAME_CHARS = set('<>:"/\\|?*')
_MAX_FILENAME_LENGTH = 80


def sanitize_filename(text: str, fallback: str = "note") -> str:
    """Turn a note title into a file name that is safe on every platform.

    - Drops control characters and characters forbidden on Windows
    - Collapses runs of whitespace into single hyphens
    - Strips leading dots and trailing dots/hyphens (hidden files, Windows quirks)
    - Truncates to a reasonable length

    Examples:
        "Meeting notes: 2024/05" -> "Meeting-notes-202405"
        "   " -> fallback

    Args:
        text: The text to sanitize, usually a note title.
        fallback: Returned when nothing usable remains.

    Returns:
        A non-empty file name without extension.
    """
    if not text:
        return fallback

    words = []
    for word in unicodedata.normalize("NFC", text).split():
        cleaned = "".join(
            c
            for c in word
            if c not in _FORBIDDEN_FILENAME_CHARS
            and not unicodedata.category(c).startswith("C")
        )
        if cleaned:
            words.append(cleaned)

    result = "-".join(words)
    result = result.lstrip(".")[:_MAX_FILENAME_LENGTH].rstrip(".-")
    return result or fallback
