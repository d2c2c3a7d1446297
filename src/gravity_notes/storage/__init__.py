"""Storage layer for the Gravity notes engine."""

from gravity_notes.storage.metadata import DerivedMetadata, derive_metadata, is_note_empty
from gravity_notes.storage.note_repository import NoteRepository

__all__ = [
    "DerivedMetadata",
    "NoteRepository",
    "derive_metadata",
    "is_note_empty",
]
