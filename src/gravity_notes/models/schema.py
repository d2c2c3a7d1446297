"""Data models for the Gravity notes engine."""

import datetime
import os
import re
import threading
from datetime import timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator

# Regex pattern for valid note IDs (alphanumeric, underscores, hyphens, T separator)
# Matches format: YYYYMMDDTHHMMSSffffffcccccc or similar safe patterns
SAFE_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_\-T]+$")

# Prefix of generated IDs that encodes the creation instant
_ID_TIMESTAMP_PATTERN = re.compile(r"^(\d{8}T\d{6})(\d{6})")


def validate_safe_path_component(value: str, field_name: str = "value") -> str:
    """Validate that a value is safe to use as a filesystem path component.

    Prevents path traversal attacks by rejecting:
    - Path separators (/, \\)
    - Parent directory references (..)
    - Any characters outside alphanumeric, underscore, hyphen, T

    Args:
        value: The string to validate
        field_name: Name of the field for error messages

    Returns:
        The validated value (unchanged)

    Raises:
        ValueError: If the value contains unsafe characters
    """
    if not value:
        raise ValueError(f"{field_name} cannot be empty")

    if ".." in value:
        raise ValueError(f"{field_name} cannot contain '..' (path traversal)")

    if "/" in value or "\\" in value:
        raise ValueError(f"{field_name} cannot contain path separators")

    if not SAFE_ID_PATTERN.match(value):
        raise ValueError(
            f"{field_name} contains invalid characters. "
            "Only alphanumeric characters, underscores, hyphens, and 'T' are allowed."
        )

    return value


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: Optional[datetime.datetime]) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    SQLite hands back naive datetimes, so everything read from the index
    passes through here.

    Args:
        dt_value: A datetime that may or may not have timezone info.

    Returns:
        The same datetime with UTC timezone if it was naive, otherwise unchanged.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


# Thread-safe counter for uniqueness (seeded from PID for cross-process safety)
_id_lock = threading.Lock()
_last_timestamp = 0
_counter = (os.getpid() * 7) % 1_000_000


def generate_id(now: Optional[datetime.datetime] = None) -> str:
    """Generate a timestamp-based note ID with guaranteed uniqueness.

    Returns:
        A string in format "YYYYMMDDTHHMMSSffffffcccccc" where:
        - YYYYMMDD is the date
        - T is the ISO 8601 date/time separator
        - HHMMSS is the time (hours, minutes, seconds)
        - ffffff is the 6-digit microsecond component
        - cccccc is a 6-digit counter for same-microsecond uniqueness

    The creation instant is recoverable with ``created_at_from_id``, which
    lets an in-memory index be rebuilt from the note files alone.
    """
    global _last_timestamp, _counter

    with _id_lock:
        now = ensure_timezone_aware(now) if now is not None else utc_now()
        now = now.astimezone(timezone.utc)
        current_timestamp = int(now.timestamp() * 1_000_000)

        if current_timestamp == _last_timestamp:
            _counter += 1
        else:
            _last_timestamp = current_timestamp
            _counter = (os.getpid() * 7) % 1_000_000

        _counter %= 1_000_000

        date_time = now.strftime("%Y%m%dT%H%M%S")
        return f"{date_time}{now.microsecond:06d}{_counter:06d}"


def created_at_from_id(note_id: str) -> Optional[datetime.datetime]:
    """Recover the creation instant encoded in a generated note ID.

    Returns None for IDs that were not produced by ``generate_id``.
    """
    match = _ID_TIMESTAMP_PATTERN.match(note_id)
    if not match:
        return None
    try:
        parsed = datetime.datetime.strptime(match.group(1), "%Y%m%dT%H%M%S")
    except ValueError:
        return None
    return parsed.replace(microsecond=int(match.group(2)), tzinfo=timezone.utc)


class NoteMeta(BaseModel):
    """Derived, cached summary of a note, returned instead of raw content."""

    id: str = Field(..., description="Unique ID of the note")
    path: str = Field(..., description="Location of the note's content file")
    title: str = Field(..., description="First non-empty line, or a placeholder")
    preview: str = Field(default="", description="Truncated text after the title")
    created_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was created (UTC)"
    )
    modified_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was last saved (UTC)"
    )
    word_count: int = Field(default=0, ge=0, description="Whitespace-delimited tokens")
    char_count: int = Field(default=0, ge=0, description="Unicode code points")

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Validate that the ID is safe for filesystem use."""
        return validate_safe_path_component(v, "Note ID")

    @field_validator("created_at", "modified_at")
    @classmethod
    def validate_timestamps(cls, v: datetime.datetime) -> datetime.datetime:
        """Store every timestamp as UTC-aware."""
        return ensure_timezone_aware(v)
