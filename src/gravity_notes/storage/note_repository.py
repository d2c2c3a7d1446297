"""Repository for note storage and retrieval."""

import datetime
import logging
import os
import threading
import weakref
from datetime import timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from gravity_notes.config import config
from gravity_notes.exceptions import (
    ErrorCode,
    NoteNotFoundError,
    StorageError,
    ValidationError,
)
from gravity_notes.models.db_models import DBNoteMeta, get_session_factory, init_db
from gravity_notes.models.schema import (
    NoteMeta,
    created_at_from_id,
    ensure_timezone_aware,
    generate_id,
    utc_now,
    validate_safe_path_component,
)
from gravity_notes.storage.metadata import (
    DerivedMetadata,
    content_hash,
    derive_metadata,
)

logger = logging.getLogger(__name__)

NOTE_SUFFIX = ".md"
STAGING_SUFFIX = ".tmp"
_MAX_ID_ATTEMPTS = 16

Clock = Callable[[], datetime.datetime]


def require_valid_note_id(note_id: str) -> str:
    """Reject IDs that are empty, not strings, or unsafe as file names.

    Raises:
        ValidationError: With ``INVALID_NOTE_ID`` if the ID is malformed.
    """
    if not isinstance(note_id, str):
        raise ValidationError(
            "Note ID must be a string",
            field="id",
            value=note_id,
            code=ErrorCode.INVALID_NOTE_ID,
        )
    try:
        return validate_safe_path_component(note_id, "Note ID")
    except ValueError as e:
        raise ValidationError(
            str(e), field="id", value=note_id, code=ErrorCode.INVALID_NOTE_ID
        ) from e


def _to_db_time(value: datetime.datetime) -> datetime.datetime:
    """SQLite stores naive datetimes; the index keeps them in UTC."""
    return ensure_timezone_aware(value).astimezone(timezone.utc).replace(tzinfo=None)


class NoteRepository:
    """Repository for note storage and retrieval.

    Each note is a plain text file ``<id>.md`` holding exactly the saved
    content, and one row in a SQLite metadata index. The files are the
    record of truth: the index is a derived cache that is reconciled with
    the files on startup and rewritten in the same unit as every write.

    A write stages the new content in a temp file, upserts the index row
    in an open transaction, moves the temp file over the note, then
    commits. A failure at any step leaves the previous content and
    metadata in place.
    """

    def __init__(
        self,
        notes_dir: Optional[Path] = None,
        database_path: Optional[Path] = None,
        in_memory_db: Optional[bool] = None,
        engine: Optional[Engine] = None,
        clock: Optional[Clock] = None,
    ):
        """Initialize the repository.

        Args:
            notes_dir: Directory containing the note files.
                       If None, uses config.notes_dir.
            database_path: Path to a SQLite index file. Ignored when engine
                           is provided. Implies a file-backed index.
            in_memory_db: If True, keep the index in memory and rebuild it
                          from the files. Defaults to config.in_memory_db.
            engine: Pre-configured SQLAlchemy engine for the index.
            clock: Callable returning the current UTC time. Defaults to
                   utc_now; tests inject a controllable clock.
        """
        self.notes_dir = (
            config.get_absolute_path(Path(notes_dir))
            if notes_dir
            else config.get_absolute_path(config.notes_dir)
        )
        self.notes_dir.mkdir(parents=True, exist_ok=True)
        self._clock = clock or utc_now

        if engine is not None:
            self.engine = engine
        elif database_path is not None:
            db_path = config.get_absolute_path(Path(database_path))
            db_path.parent.mkdir(parents=True, exist_ok=True)
            self.engine = init_db(db_url=f"sqlite:///{db_path}")
        else:
            self.engine = init_db(in_memory=in_memory_db)
        self.session_factory = get_session_factory(self.engine)

        # Serializes index transactions; held only around short DB work
        self._index_lock = threading.RLock()

        # Per-note locks to prevent save/delete races (uses WeakValueDictionary
        # so locks are garbage collected when no longer held by any thread)
        self._note_locks: "weakref.WeakValueDictionary[str, threading.RLock]" = (
            weakref.WeakValueDictionary()
        )
        self._note_locks_lock = threading.Lock()

        logger.info(
            f"NoteRepository initialized: notes_dir={self.notes_dir}, "
            f"index={self.engine.url}"
        )

        self._cleanup_staging()
        self.rebuild_index()

    # -------------------------------------------------------------------------
    # Locking and paths
    # -------------------------------------------------------------------------

    def get_note_lock(self, note_id: str) -> threading.RLock:
        """Get or create the lock guarding one note's content and metadata.

        Reentrant, so a caller holding it (for a check-then-delete) can call
        back into ``save``/``delete`` for the same note.

        Args:
            note_id: The ID of the note to lock.

        Returns:
            A reentrant lock for the specified note.
        """
        with self._note_locks_lock:
            lock = self._note_locks.get(note_id)
            if lock is None:
                lock = threading.RLock()
                self._note_locks[note_id] = lock
            return lock

    def content_path(self, note_id: str) -> Path:
        return self.notes_dir / f"{note_id}{NOTE_SUFFIX}"

    def _now(self) -> datetime.datetime:
        return ensure_timezone_aware(self._clock())

    def _derive(self, content: str) -> DerivedMetadata:
        return derive_metadata(
            content,
            title_max_length=config.title_max_length,
            preview_max_length=config.preview_max_length,
            preview_max_lines=config.preview_max_lines,
        )

    def _cleanup_staging(self) -> None:
        """Remove temp files left behind by a write that never completed."""
        for staged in self.notes_dir.glob(f"*{NOTE_SUFFIX}{STAGING_SUFFIX}"):
            try:
                staged.unlink()
                logger.info(f"Removed stale staging file {staged.name}")
            except OSError as e:
                logger.warning(f"Cannot remove staging file {staged.name}: {e}")

    # -------------------------------------------------------------------------
    # File helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _read_file(path: Path) -> str:
        # newline="" keeps \r\n intact so content round-trips exactly
        with open(path, "r", encoding="utf-8", newline="") as f:
            return f.read()

    @staticmethod
    def _stage_file(path: Path, content: str, modified_at: datetime.datetime) -> Path:
        """Write content to a temp file beside ``path`` and flush it to disk.

        The temp file's mtime is set to ``modified_at`` so it survives the
        rename; an index rebuild reads it back as the modification time.
        """
        staged = path.with_name(path.name + STAGING_SUFFIX)
        try:
            with open(staged, "w", encoding="utf-8", newline="") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            ts = modified_at.timestamp()
            os.utime(staged, (ts, ts))
        except BaseException:
            staged.unlink(missing_ok=True)
            raise
        return staged

    def _replace_file(self, path: Path, content: str, modified_at: datetime.datetime) -> None:
        staged = self._stage_file(path, content, modified_at)
        try:
            os.replace(staged, path)
        except BaseException:
            staged.unlink(missing_ok=True)
            raise

    def _file_times(self, note_id: str, path: Path) -> Dict[str, datetime.datetime]:
        stat = path.stat()
        modified_at = datetime.datetime.fromtimestamp(stat.st_mtime, timezone.utc)
        created_at = created_at_from_id(note_id) or datetime.datetime.fromtimestamp(
            stat.st_ctime, timezone.utc
        )
        return {"created_at": created_at, "modified_at": modified_at}

    # -------------------------------------------------------------------------
    # Index helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _row_to_model(row: DBNoteMeta) -> NoteMeta:
        return NoteMeta(
            id=row.id,
            path=row.path,
            title=row.title,
            preview=row.preview,
            created_at=ensure_timezone_aware(row.created_at),
            modified_at=ensure_timezone_aware(row.modified_at),
            word_count=row.word_count,
            char_count=row.char_count,
        )

    def _apply_to_row(
        self,
        session: Session,
        note_id: str,
        path: Path,
        content: str,
        created_at: datetime.datetime,
        modified_at: datetime.datetime,
    ) -> DBNoteMeta:
        """Insert or update the index row for a note within an open session.

        This is the single write path from content to index. The caller
        controls the transaction boundary.
        """
        derived = self._derive(content)
        row = session.get(DBNoteMeta, note_id)
        if row is None:
            row = DBNoteMeta(id=note_id, created_at=_to_db_time(created_at))
            session.add(row)
        row.path = str(path)
        row.title = derived.title
        row.preview = derived.preview
        row.modified_at = _to_db_time(modified_at)
        row.word_count = derived.word_count
        row.char_count = derived.char_count
        row.content_hash = content_hash(content)
        session.flush()
        return row

    def rebuild_index(self) -> int:
        """Reconcile the metadata index with the note files on disk.

        1. Rows whose file no longer exists are removed.
        2. Files without a row, or whose content hash no longer matches
           their row, are re-derived. ``created_at`` comes from the existing
           row, else from the timestamp encoded in the ID, else the file
           ctime; ``modified_at`` comes from the file mtime.
        3. Everything happens in one transaction.

        Files that cannot be read are logged and skipped.

        Returns:
            Number of notes present in the index afterwards.
        """
        with self._index_lock, self.session_factory() as session:
            rows = {row.id: row for row in session.scalars(select(DBNoteMeta))}

            files: Dict[str, Path] = {}
            for file_path in self.notes_dir.glob(f"*{NOTE_SUFFIX}"):
                try:
                    validate_safe_path_component(file_path.stem, "Note ID")
                except ValueError:
                    logger.warning(f"Ignoring file with unusable name: {file_path.name}")
                    continue
                files[file_path.stem] = file_path

            orphaned = set(rows) - set(files)
            for orphan_id in orphaned:
                session.delete(rows.pop(orphan_id))
            if orphaned:
                logger.info(f"Removing {len(orphaned)} orphaned index entries")

            refreshed = 0
            failed_files: List[str] = []
            for note_id, file_path in files.items():
                try:
                    content = self._read_file(file_path)
                    row = rows.get(note_id)
                    if row is not None and row.content_hash == content_hash(content):
                        row.path = str(file_path)
                        continue
                    times = self._file_times(note_id, file_path)
                    created_at = (
                        ensure_timezone_aware(row.created_at)
                        if row is not None
                        else times["created_at"]
                    )
                    self._apply_to_row(
                        session,
                        note_id,
                        file_path,
                        content,
                        created_at=created_at,
                        modified_at=times["modified_at"],
                    )
                    refreshed += 1
                except (OSError, UnicodeDecodeError) as e:
                    logger.error(f"Cannot read file {file_path.name}: {e}")
                    failed_files.append(file_path.name)

            if failed_files:
                logger.warning(
                    f"Failed to index {len(failed_files)} files: "
                    f"{failed_files[:5]}{'...' if len(failed_files) > 5 else ''}"
                )

            try:
                session.commit()
            except SQLAlchemyError as e:
                raise StorageError(
                    "Failed to rebuild metadata index",
                    operation="rebuild_index",
                    code=ErrorCode.STORAGE_INDEX_FAILED,
                    original_error=e,
                ) from e

            total = len(files) - len(failed_files)
            logger.info(
                f"Index rebuild complete: {total} notes indexed, "
                f"{refreshed} refreshed, {len(orphaned)} orphans removed, "
                f"{len(failed_files)} files failed"
            )
            return total

    # -------------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------------

    def create(self) -> NoteMeta:
        """Create a new, empty note.

        Returns:
            Metadata of the new note (title "Untitled", zero counts).

        Raises:
            StorageError: If the content file or index row cannot be written.
        """
        now = self._now()
        for _ in range(_MAX_ID_ATTEMPTS):
            note_id = generate_id(now)
            path = self.content_path(note_id)
            try:
                # Exclusive create reserves the ID on disk
                with open(path, "x", encoding="utf-8", newline=""):
                    pass
                break
            except FileExistsError:
                continue
            except OSError as e:
                raise StorageError(
                    "Failed to create note file",
                    operation="create",
                    path=str(path),
                    code=ErrorCode.STORAGE_WRITE_FAILED,
                    original_error=e,
                ) from e
        else:
            raise StorageError(
                "Could not allocate a unique note ID",
                operation="create",
                code=ErrorCode.STORAGE_WRITE_FAILED,
            )

        with self.get_note_lock(note_id):
            try:
                ts = now.timestamp()
                os.utime(path, (ts, ts))
                with self._index_lock, self.session_factory() as session:
                    row = self._apply_to_row(
                        session, note_id, path, "", created_at=now, modified_at=now
                    )
                    meta = self._row_to_model(row)
                    session.commit()
            except (OSError, SQLAlchemyError) as e:
                path.unlink(missing_ok=True)
                logger.error(f"Failed to create note {note_id}: {e}")
                raise StorageError(
                    f"Failed to create note {note_id}",
                    operation="create",
                    path=str(path),
                    code=ErrorCode.STORAGE_WRITE_FAILED,
                    original_error=e,
                ) from e

        logger.debug(f"Created note {note_id}")
        return meta

    def save(self, note_id: str, content: str) -> NoteMeta:
        """Overwrite a note's content and refresh its metadata.

        Content and metadata are committed as one unit under the note's
        lock; on failure the previously committed pair is left intact.

        Raises:
            ValidationError: If the ID is malformed.
            NoteNotFoundError: If the note does not exist.
            StorageError: If the content or index cannot be written.
        """
        require_valid_note_id(note_id)

        with self.get_note_lock(note_id):
            path = self.content_path(note_id)
            previous = self._read_existing(note_id, path, operation="save")
            now = self._now()

            try:
                staged = self._stage_file(path, content, now)
            except OSError as e:
                logger.error(f"Failed to stage note {note_id}: {e}")
                raise StorageError(
                    f"Failed to write note {note_id}",
                    operation="save",
                    path=str(path),
                    code=ErrorCode.STORAGE_WRITE_FAILED,
                    original_error=e,
                ) from e

            replaced = False
            try:
                with self._index_lock, self.session_factory() as session:
                    existing = session.get(DBNoteMeta, note_id)
                    created_at = (
                        ensure_timezone_aware(existing.created_at)
                        if existing is not None
                        else self._file_times(note_id, path)["created_at"]
                    )
                    row = self._apply_to_row(
                        session, note_id, path, content,
                        created_at=created_at, modified_at=now,
                    )
                    meta = self._row_to_model(row)
                    os.replace(staged, path)
                    replaced = True
                    session.commit()
            except (OSError, SQLAlchemyError) as e:
                staged.unlink(missing_ok=True)
                if replaced:
                    self._restore_content(note_id, path, previous)
                logger.error(f"Failed to save note {note_id}: {e}")
                raise StorageError(
                    f"Failed to write note {note_id}",
                    operation="save",
                    path=str(path),
                    code=ErrorCode.STORAGE_WRITE_FAILED,
                    original_error=e,
                ) from e

        logger.debug(f"Saved note {note_id} ({meta.char_count} chars)")
        return meta

    def get(self, note_id: str) -> str:
        """Return the current raw content of a note.

        Raises:
            ValidationError: If the ID is malformed.
            NoteNotFoundError: If the note does not exist.
            StorageError: If the file cannot be read.
        """
        require_valid_note_id(note_id)
        with self.get_note_lock(note_id):
            return self._read_existing(note_id, self.content_path(note_id), operation="read")

    def get_meta(self, note_id: str) -> NoteMeta:
        """Return the committed metadata of a single note.

        Raises:
            ValidationError: If the ID is malformed.
            NoteNotFoundError: If the note does not exist.
        """
        require_valid_note_id(note_id)
        with self.get_note_lock(note_id):
            if not self.content_path(note_id).exists():
                raise NoteNotFoundError(note_id)
            try:
                with self._index_lock, self.session_factory() as session:
                    row = session.get(DBNoteMeta, note_id)
                    if row is not None:
                        return self._row_to_model(row)
            except SQLAlchemyError as e:
                raise StorageError(
                    f"Failed to read metadata for note {note_id}",
                    operation="get_meta",
                    code=ErrorCode.STORAGE_INDEX_FAILED,
                    original_error=e,
                ) from e
        # A file without a row appears when another process wrote it
        self.rebuild_index()
        with self._index_lock, self.session_factory() as session:
            row = session.get(DBNoteMeta, note_id)
            if row is None:
                raise NoteNotFoundError(note_id)
            return self._row_to_model(row)

    def exists(self, note_id: str) -> bool:
        require_valid_note_id(note_id)
        return self.content_path(note_id).exists()

    def delete(self, note_id: str) -> None:
        """Delete a note's content file and index row.

        Deleting twice is not idempotent: the second call raises
        NoteNotFoundError, which callers use to detect races.

        Raises:
            ValidationError: If the ID is malformed.
            NoteNotFoundError: If the note does not exist.
            StorageError: If the file or index row cannot be removed.
        """
        require_valid_note_id(note_id)

        with self.get_note_lock(note_id):
            path = self.content_path(note_id)
            previous = self._read_existing(note_id, path, operation="delete")

            removed = False
            try:
                with self._index_lock, self.session_factory() as session:
                    row = session.get(DBNoteMeta, note_id)
                    if row is not None:
                        session.delete(row)
                        session.flush()
                    os.remove(path)
                    removed = True
                    session.commit()
            except (OSError, SQLAlchemyError) as e:
                if removed:
                    self._restore_content(note_id, path, previous)
                logger.error(f"Failed to delete note {note_id}: {e}")
                raise StorageError(
                    f"Failed to delete note {note_id}",
                    operation="delete",
                    path=str(path),
                    code=ErrorCode.STORAGE_DELETE_FAILED,
                    original_error=e,
                ) from e

        logger.debug(f"Deleted note {note_id}")

    def list(self) -> List[NoteMeta]:
        """Return the committed metadata of every note, unordered.

        Raises:
            StorageError: If the index cannot be read.
        """
        try:
            with self._index_lock, self.session_factory() as session:
                rows = session.scalars(select(DBNoteMeta)).all()
                return [self._row_to_model(row) for row in rows]
        except SQLAlchemyError as e:
            raise StorageError(
                "Failed to list notes",
                operation="list",
                code=ErrorCode.STORAGE_INDEX_FAILED,
                original_error=e,
            ) from e

    def count_notes(self) -> int:
        return len(list(self.notes_dir.glob(f"*{NOTE_SUFFIX}")))

    # -------------------------------------------------------------------------
    # Internal helpers for the write paths
    # -------------------------------------------------------------------------

    def _read_existing(self, note_id: str, path: Path, operation: str) -> str:
        try:
            return self._read_file(path)
        except FileNotFoundError:
            raise NoteNotFoundError(note_id) from None
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(
                f"Failed to read note {note_id}",
                operation=operation,
                path=str(path),
                code=ErrorCode.STORAGE_READ_FAILED,
                original_error=e,
            ) from e

    def _restore_content(self, note_id: str, path: Path, previous: str) -> None:
        """Put back the content that matches the still-committed index row."""
        try:
            with self._index_lock, self.session_factory() as session:
                row = session.get(DBNoteMeta, note_id)
                modified_at = (
                    ensure_timezone_aware(row.modified_at) if row is not None else self._now()
                )
            self._replace_file(path, previous, modified_at)
            logger.warning(f"Restored previous content of note {note_id}")
        except (OSError, SQLAlchemyError) as e:
            # The next rebuild_index re-derives the row from whatever is on disk
            logger.error(f"Failed to restore note {note_id} after write error: {e}")
