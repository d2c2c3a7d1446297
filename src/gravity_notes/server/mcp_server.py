"""MCP server exposing the note operations as tools."""

import json
import logging
import uuid
from typing import Any, List, Optional

from mcp.server.fastmcp import FastMCP

from gravity_notes.config import config
from gravity_notes.exceptions import GravityError, NoteNotFoundError, ValidationError
from gravity_notes.models.schema import NoteMeta
from gravity_notes.observability import metrics, timed_operation
from gravity_notes.services.note_service import DEFAULT_CLEANUP_MAX_AGE_MINUTES, NoteService

logger = logging.getLogger(__name__)


def _meta_json(meta: NoteMeta) -> str:
    return json.dumps(meta.model_dump(mode="json"), ensure_ascii=False)


def _meta_list_json(notes: List[NoteMeta]) -> str:
    return json.dumps([n.model_dump(mode="json") for n in notes], ensure_ascii=False)


class GravityMcpServer:
    """MCP server for the notes engine."""

    def __init__(self, service: Optional[NoteService] = None):
        """Initialize the MCP server.

        Args:
            service: The facade to expose. Created with defaults if None.
        """
        self.mcp = FastMCP(config.server_name)
        self.note_service = service or NoteService()
        self._register_tools()
        logger.info("Gravity MCP server initialized")

    def format_error_response(self, error: Exception) -> str:
        """Format an error response in a consistent way.

        Missing notes and rejected input are recoverable and reported with
        their message; everything else gets a short reference that points
        at the full entry in the log.
        """
        error_id = str(uuid.uuid4())[:8]

        if isinstance(error, NoteNotFoundError):
            logger.info(f"[{error.code.name}] [{error_id}]: {error.message}")
            return f"Error: {error.message}"
        elif isinstance(error, ValidationError):
            logger.warning(f"[{error.code.name}] [{error_id}]: {error.message}")
            return f"Error: {error.message}"
        elif isinstance(error, GravityError):
            logger.error(
                f"[{error.code.name}] [{error_id}]: {error.message}",
                extra={"error_details": error.details},
            )
            return f"Error: {error.message} (ref: {error_id})"
        elif isinstance(error, (IOError, OSError)):
            logger.error(f"File system error [{error_id}]: {str(error)}", exc_info=True)
            return f"Error: A file system error occurred (ref: {error_id})"
        else:
            logger.error(f"Unexpected error [{error_id}]: {str(error)}", exc_info=True)
            return f"Error: An unexpected error occurred (ref: {error_id})"

    def _register_tools(self) -> None:
        """Register MCP tools."""

        @self.mcp.tool(name="notes_create")
        def notes_create() -> str:
            """Create a new empty note.
            Returns:
                JSON metadata of the new note (id, title, counts, timestamps).
            """
            with timed_operation("notes_create") as op:
                try:
                    meta = self.note_service.create_note()
                    op["note_id"] = meta.id
                    return _meta_json(meta)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="notes_save")
        def notes_save(note_id: str, content: str) -> str:
            """Replace the content of a note.
            Args:
                note_id: The ID of the note
                content: The full new text of the note
            Returns:
                JSON metadata recomputed from the saved content.
            """
            with timed_operation("notes_save", note_id=note_id) as op:
                try:
                    meta = self.note_service.save_note(note_id, content)
                    op["char_count"] = meta.char_count
                    return _meta_json(meta)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="notes_get")
        def notes_get(note_id: str) -> str:
            """Get the raw content of a note.
            Args:
                note_id: The ID of the note
            """
            with timed_operation("notes_get", note_id=note_id):
                try:
                    return self.note_service.get_note(note_id)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="notes_delete")
        def notes_delete(note_id: str) -> str:
            """Delete a note permanently.
            Args:
                note_id: The ID of the note
            """
            with timed_operation("notes_delete", note_id=note_id):
                try:
                    self.note_service.delete_note(note_id)
                    return f"Note {note_id} deleted successfully."
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="notes_list")
        def notes_list() -> str:
            """List metadata of all notes, most recently modified first."""
            with timed_operation("notes_list") as op:
                try:
                    notes = self.note_service.list_notes()
                    op["result_count"] = len(notes)
                    return _meta_list_json(notes)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="notes_delete_if_empty")
        def notes_delete_if_empty(note_id: str) -> str:
            """Delete a note only if it contains nothing but whitespace.
            Args:
                note_id: The ID of the note
            Returns:
                JSON object {"deleted": true|false}.
            """
            with timed_operation("notes_delete_if_empty", note_id=note_id) as op:
                try:
                    deleted = self.note_service.delete_if_empty(note_id)
                    op["deleted"] = deleted
                    return json.dumps({"deleted": deleted})
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="notes_cleanup_empty")
        def notes_cleanup_empty(max_age_minutes: int = DEFAULT_CLEANUP_MAX_AGE_MINUTES) -> str:
            """Delete empty notes that have not been modified for a while.
            Args:
                max_age_minutes: Minimum age in minutes of an empty note before it is removed (default: 15)
            Returns:
                JSON object {"deleted": <count>}.
            """
            with timed_operation("notes_cleanup_empty", max_age_minutes=max_age_minutes) as op:
                try:
                    count = self.note_service.cleanup_empty_notes(max_age_minutes)
                    op["deleted"] = count
                    return json.dumps({"deleted": count})
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="notes_export")
        def notes_export(
            note_id: str,
            destination: str,
            format: str = "md",
            filename: Optional[str] = None,
        ) -> str:
            """Export a note to a file.
            Args:
                note_id: The ID of the note
                destination: Existing directory to write the file into
                format: "md" (content as-is) or "txt" (heading marks stripped)
                filename: File name without extension (defaults to the note title)
            """
            with timed_operation("notes_export", note_id=note_id, format=format):
                try:
                    path = self.note_service.export_note(note_id, format, destination, filename)
                    return f"Note exported to {path}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="notes_status")
        def notes_status() -> str:
            """Report the store size, cleanup settings and call statistics.
            Returns:
                JSON object with "notes", "cleanup", "summary" and "operations".
            """
            with timed_operation("notes_status"):
                try:
                    status = {
                        "notes": len(self.note_service.list_notes()),
                        "cleanup": {
                            "max_age_minutes": config.cleanup_max_age_minutes,
                            "interval_seconds": config.cleanup_interval_seconds,
                        },
                        "summary": metrics.get_summary(),
                        "operations": metrics.get_metrics(),
                    }
                    return json.dumps(status)
                except Exception as e:
                    return self.format_error_response(e)

    def run(self, **kwargs: Any) -> None:
        """Run the MCP server over stdio."""
        self.mcp.run(**kwargs)
