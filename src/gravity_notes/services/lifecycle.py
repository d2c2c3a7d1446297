"""Reclamation of abandoned empty notes.

Policy lives here; storage primitives live in NoteRepository. Emptiness
is always evaluated against the content on disk at the moment of the
decision, never against cached metadata.
"""

import datetime
import logging
import threading
from typing import Callable, List, Optional

from gravity_notes.config import config
from gravity_notes.exceptions import ErrorCode, GravityError, NoteNotFoundError, ValidationError
from gravity_notes.models.schema import NoteMeta, ensure_timezone_aware, utc_now
from gravity_notes.storage.metadata import is_note_empty
from gravity_notes.storage.note_repository import NoteRepository, require_valid_note_id

logger = logging.getLogger(__name__)


def validate_max_age(max_age_minutes: int) -> int:
    """Accept a non-negative whole number of minutes.

    Raises:
        ValidationError: With ``INVALID_MAX_AGE`` otherwise.
    """
    if isinstance(max_age_minutes, bool) or not isinstance(max_age_minutes, int):
        raise ValidationError(
            "max_age_minutes must be an integer",
            field="max_age_minutes",
            value=max_age_minutes,
            code=ErrorCode.INVALID_MAX_AGE,
        )
    if max_age_minutes < 0:
        raise ValidationError(
            "max_age_minutes cannot be negative",
            field="max_age_minutes",
            value=max_age_minutes,
            code=ErrorCode.INVALID_MAX_AGE,
        )
    return max_age_minutes


class LifecycleManager:
    """Deletes notes that are empty, on request or by age-gated sweep."""

    def __init__(
        self,
        repository: NoteRepository,
        clock: Optional[Callable[[], datetime.datetime]] = None,
    ):
        self.repository = repository
        self._clock = clock or utc_now

    def _now(self) -> datetime.datetime:
        return ensure_timezone_aware(self._clock())

    def delete_if_empty(self, note_id: str) -> bool:
        """Delete the note if its trimmed content is empty.

        The read and the delete happen under the note's lock, so a save
        that lands first is seen by the check and one that lands later
        finds the note already gone.

        Returns:
            True if the note was empty and has been deleted, False if it
            has content and was left untouched.

        Raises:
            NoteNotFoundError: If the note does not exist.
        """
        require_valid_note_id(note_id)
        with self.repository.get_note_lock(note_id):
            content = self.repository.get(note_id)
            if not is_note_empty(content):
                return False
            self.repository.delete(note_id)
        logger.debug(f"Deleted empty note {note_id}")
        return True

    def find_cleanup_candidates(
        self, max_age_minutes: int, now: Optional[datetime.datetime] = None
    ) -> List[NoteMeta]:
        """Select notes that are empty and were last modified before the cutoff.

        Takes one snapshot of the index and holds no lock across the scan.
        Each candidate carries the ``modified_at`` read at selection time.
        """
        validate_max_age(max_age_minutes)
        now = ensure_timezone_aware(now) if now is not None else self._now()
        try:
            cutoff = now - datetime.timedelta(minutes=max_age_minutes)
        except OverflowError:
            # Threshold reaches past the earliest representable time
            logger.debug(f"max_age_minutes={max_age_minutes} exceeds datetime range")
            return []

        candidates: List[NoteMeta] = []
        for meta in self.repository.list():
            if meta.modified_at >= cutoff:
                continue
            try:
                content = self.repository.get(meta.id)
            except NoteNotFoundError:
                logger.debug(f"Cleanup candidate {meta.id} vanished during scan")
                continue
            if is_note_empty(content):
                candidates.append(meta)
        return candidates

    def cleanup_empty_notes(
        self,
        max_age_minutes: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> int:
        """Run one sweep deleting empty notes older than ``max_age_minutes``.

        Every deletion re-validates under the note's lock: a note whose
        ``modified_at`` moved since selection, or that gained content, is
        skipped and not counted. Notes deleted by someone else meanwhile
        are treated as already gone. Setting ``cancel_event`` stops the
        sweep between notes; unvisited candidates wait for the next sweep.

        Args:
            max_age_minutes: Age threshold. Defaults to
                             config.cleanup_max_age_minutes.
            cancel_event: Optional cancellation token.

        Returns:
            Number of notes this sweep deleted.
        """
        if max_age_minutes is None:
            max_age_minutes = config.cleanup_max_age_minutes
        candidates = self.find_cleanup_candidates(max_age_minutes)

        deleted = 0
        for meta in candidates:
            if cancel_event is not None and cancel_event.is_set():
                logger.info(
                    f"Cleanup sweep cancelled after {deleted} deletions; "
                    "remaining candidates left for the next sweep"
                )
                break
            try:
                if self._delete_candidate(meta):
                    deleted += 1
            except NoteNotFoundError:
                logger.debug(f"Cleanup candidate {meta.id} already deleted")

        logger.info(
            f"Cleanup sweep finished: {deleted} of {len(candidates)} "
            f"candidates deleted (max_age={max_age_minutes}m)"
        )
        return deleted

    def _delete_candidate(self, selected: NoteMeta) -> bool:
        with self.repository.get_note_lock(selected.id):
            current = self.repository.get_meta(selected.id)
            if current.modified_at != selected.modified_at:
                logger.debug(f"Note {selected.id} was saved during the sweep; keeping it")
                return False
            if not is_note_empty(self.repository.get(selected.id)):
                return False
            self.repository.delete(selected.id)
            return True


class CleanupScheduler:
    """Recurring background sweep with an explicit cancellation token.

    ``run_once`` performs a single sweep and is what tests drive; ``start``
    runs sweeps on a daemon thread every ``interval_seconds`` until ``stop``.
    """

    def __init__(
        self,
        lifecycle: LifecycleManager,
        interval_seconds: Optional[float] = None,
        max_age_minutes: Optional[int] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        self._lifecycle = lifecycle
        self.interval_seconds = (
            interval_seconds
            if interval_seconds is not None
            else config.cleanup_interval_seconds
        )
        self.max_age_minutes = validate_max_age(
            max_age_minutes
            if max_age_minutes is not None
            else config.cleanup_max_age_minutes
        )
        if self.interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._stop_event = stop_event or threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.sweep_count = 0
        self.last_deleted: Optional[int] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> int:
        deleted = self._lifecycle.cleanup_empty_notes(
            self.max_age_minutes, cancel_event=self._stop_event
        )
        self.sweep_count += 1
        self.last_deleted = deleted
        return deleted

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="gravity-cleanup", daemon=True
        )
        self._thread.start()
        logger.info(
            f"Cleanup scheduler started (every {self.interval_seconds}s, "
            f"max_age={self.max_age_minutes}m)"
        )

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Cancel the schedule, interrupting a sweep between notes."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Cleanup thread did not stop within timeout")
            self._thread = None
        logger.info("Cleanup scheduler stopped")

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except GravityError as e:
                # The sweep is retried on the next tick
                logger.error(f"Cleanup sweep failed: {e}")
            except Exception:
                logger.exception("Unexpected error in cleanup sweep")
            if self._stop_event.wait(self.interval_seconds):
                break
