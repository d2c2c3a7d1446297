"""Service layer exposing the note operations to the UI."""

import datetime
import logging
from pathlib import Path
from typing import Callable, List, Optional

from gravity_notes.config import config
from gravity_notes.exceptions import ErrorCode, ValidationError
from gravity_notes.models.schema import NoteMeta
from gravity_notes.observability import traced
from gravity_notes.services.export import NoteExporter
from gravity_notes.services.lifecycle import LifecycleManager, validate_max_age
from gravity_notes.storage.note_repository import NoteRepository, require_valid_note_id

logger = logging.getLogger(__name__)

DEFAULT_CLEANUP_MAX_AGE_MINUTES = 15


class NoteService:
    """The operation set surfaced to callers.

    Validates input shapes, then delegates to NoteRepository for storage
    and to LifecycleManager for emptiness policy. Holds no state of its own.
    Errors from the layers below propagate unchanged.
    """

    def __init__(
        self,
        repository: Optional[NoteRepository] = None,
        lifecycle: Optional[LifecycleManager] = None,
        clock: Optional[Callable[[], datetime.datetime]] = None,
    ):
        """Initialize the service.

        Args:
            repository: Note storage backend. Created with defaults if None.
            lifecycle: Cleanup policy. Created over ``repository`` if None.
            clock: Clock shared with the default repository and lifecycle.
        """
        self.repository = repository or NoteRepository(clock=clock)
        self.lifecycle = lifecycle or LifecycleManager(self.repository, clock=clock)
        self.exporter = NoteExporter(self.repository)

    @staticmethod
    def _validate_content(content: str) -> str:
        if not isinstance(content, str):
            raise ValidationError(
                "Note content must be a string",
                field="content",
                value=type(content).__name__,
            )
        try:
            content.encode("utf-8")
        except UnicodeEncodeError as e:
            raise ValidationError(
                "Note content is not valid Unicode text",
                field="content",
                value=f"position {e.start}",
            ) from e
        if len(content) > config.max_content_length:
            raise ValidationError(
                f"Content exceeds maximum length of {config.max_content_length} characters",
                field="content",
                code=ErrorCode.CONTENT_TOO_LARGE,
            )
        return content

    @traced("create_note")
    def create_note(self) -> NoteMeta:
        """Create an empty note and return its metadata."""
        return self.repository.create()

    @traced("save_note")
    def save_note(self, note_id: str, content: str) -> NoteMeta:
        """Replace a note's content and return the refreshed metadata."""
        require_valid_note_id(note_id)
        self._validate_content(content)
        return self.repository.save(note_id, content)

    @traced("delete_note")
    def delete_note(self, note_id: str) -> None:
        require_valid_note_id(note_id)
        self.repository.delete(note_id)

    @traced("get_note")
    def get_note(self, note_id: str) -> str:
        require_valid_note_id(note_id)
        return self.repository.get(note_id)

    @traced("list_notes")
    def list_notes(self) -> List[NoteMeta]:
        """Return metadata for every note, most recently modified first."""
        notes = self.repository.list()
        notes.sort(key=lambda n: n.modified_at, reverse=True)
        return notes

    @traced("delete_if_empty")
    def delete_if_empty(self, note_id: str) -> bool:
        require_valid_note_id(note_id)
        return self.lifecycle.delete_if_empty(note_id)

    @traced("cleanup_empty_notes")
    def cleanup_empty_notes(
        self, max_age_minutes: int = DEFAULT_CLEANUP_MAX_AGE_MINUTES
    ) -> int:
        """Delete empty notes untouched for longer than ``max_age_minutes``."""
        validate_max_age(max_age_minutes)
        return self.lifecycle.cleanup_empty_notes(max_age_minutes)

    @traced("export_note")
    def export_note(
        self,
        note_id: str,
        export_format: str,
        destination: Path,
        filename: Optional[str] = None,
    ) -> Path:
        """Write a note to ``destination`` as markdown or plain text."""
        require_valid_note_id(note_id)
        return self.exporter.export(note_id, export_format, Path(destination), filename)
