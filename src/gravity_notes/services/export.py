"""Export of notes to standalone files outside the store."""

import logging
from pathlib import Path
from typing import Optional

from gravity_notes.exceptions import ErrorCode, StorageError, ValidationError
from gravity_notes.storage.note_repository import NoteRepository
from gravity_notes.utils import sanitize_filename

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("md", "txt")


def render_export(content: str, export_format: str) -> str:
    """Render note content for the given export format.

    ``md`` is the content verbatim. ``txt`` strips heading marks and the
    surrounding whitespace from every line.
    """
    if export_format == "md":
        return content
    if export_format == "txt":
        return "\n".join(line.lstrip("#").strip() for line in content.splitlines())
    raise ValidationError(
        f"Unsupported export format: {export_format}. "
        f"Valid formats are: {', '.join(EXPORT_FORMATS)}",
        field="format",
        value=export_format,
        code=ErrorCode.INVALID_EXPORT_FORMAT,
    )


class NoteExporter:
    """Writes a note's content to a file in a caller-chosen directory."""

    def __init__(self, repository: NoteRepository):
        self.repository = repository

    def export(
        self,
        note_id: str,
        export_format: str,
        destination: Path,
        filename: Optional[str] = None,
    ) -> Path:
        """Export a note and return the path of the written file.

        The file name defaults to the note title, sanitized, falling back
        to the note ID. An existing file with the same name is overwritten.

        Raises:
            ValidationError: If the format is unknown.
            NoteNotFoundError: If the note does not exist.
            StorageError: If the destination is missing or not writable.
        """
        export_format = export_format.lower()
        if export_format not in EXPORT_FORMATS:
            # Raises with the list of valid formats
            render_export("", export_format)

        destination = Path(destination)
        if not destination.is_dir():
            raise StorageError(
                "Export destination is not a directory",
                operation="export",
                path=str(destination),
                code=ErrorCode.STORAGE_WRITE_FAILED,
            )

        # Content and title must come from the same committed save
        with self.repository.get_note_lock(note_id):
            content = self.repository.get(note_id)
            if filename is None:
                filename = self.repository.get_meta(note_id).title
        stem = sanitize_filename(filename, fallback=note_id)

        output_path = destination / f"{stem}.{export_format}"
        try:
            with open(output_path, "w", encoding="utf-8", newline="") as f:
                f.write(render_export(content, export_format))
        except OSError as e:
            raise StorageError(
                f"Failed to export note {note_id}",
                operation="export",
                path=str(output_path),
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e

        logger.info(f"Exported note {note_id} to {output_path.name}")
        return output_path
