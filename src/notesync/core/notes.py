"""Note commands for notesync.

Thin orchestration invoked by a UI layer. Every command writes the Local
Store first and only then, when the connectivity probe reports online,
hands the note to the sync engine's push logic. Network failures are never
raised to the caller; the note stays pending and the next refresh retries.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from .database import Database
from .models import Note, NoteState, new_local_id
from .sync import RefreshResult, SyncEngine, apply_edit, mark_pending_delete
from .timestamp_utils import utc_now
from .validation import ValidationError, normalize_tags, validate_title

logger = logging.getLogger(__name__)

__all__ = ["NoteCommands", "create_note"]


def create_note(title: str, tags: Optional[Iterable[str]] = None) -> Note:
    """Build a new local-only note. Pure construction, no I/O.

    Raises:
        ValidationError: If the title trims to empty or tags are invalid
    """
    now = utc_now()
    return Note(
        local_id=new_local_id(),
        title=validate_title(title),
        tags=normalize_tags(tags),
        created_at=now,
        updated_at=now,
    )


class NoteCommands:
    """The UI trigger surface: create, submit, edit, delete, get, list, refresh."""

    def __init__(self, db: Database, engine: SyncEngine) -> None:
        self.db = db
        self.engine = engine

    def create_note(self, title: str, tags: Optional[Iterable[str]] = None) -> Note:
        return create_note(title, tags)

    def submit_note(self, note: Note) -> Note:
        """Store a note, then try to create it remotely when online.

        Returns:
            The stored note, with a server_id if the remote create succeeded
        """
        with self.db.note_lock(note.local_id):
            self.db.put_note(note)
        logger.info(f"Saved note {note.local_id} locally")

        if not self.engine.is_online():
            logger.info(f"Offline; note {note.local_id} will be pushed on next refresh")
            return note
        return self.engine.push_create(note.local_id) or note

    def delete_note(self, local_id: str) -> bool:
        """Delete a note.

        Local-only notes are removed immediately. Confirmed notes are deleted
        remotely when online; offline (or if the remote call fails) they are
        kept as a tombstone until a refresh confirms the delete.

        Returns:
            False if no such note exists, True otherwise
        """
        with self.db.note_lock(local_id):
            note = self.db.get_note(local_id)
            if note is None:
                logger.info(f"Delete ignored; note {local_id} not found")
                return False

            if note.state is NoteState.LOCAL_ONLY:
                self.db.delete_note(local_id)
                logger.info(f"Deleted local-only note {local_id}")
                return True

            if not self.engine.is_online():
                if note.state is not NoteState.PENDING_DELETE:
                    self.db.put_note(mark_pending_delete(note, utc_now()))
                logger.info(f"Offline; note {local_id} marked for deletion")
                return True

            self.engine.push_delete(local_id)
            return True

    def edit_note(
        self,
        local_id: str,
        title: str,
        tags: Optional[Iterable[str]] = None,
    ) -> Optional[Note]:
        """Edit a note's title and, optionally, its tags.

        Confirmed notes are stored with a pending edit before the remote
        update is attempted, so a failed push leaves a consistent marker.

        Returns:
            The stored note, or None if no such note exists

        Raises:
            ValidationError: If the title is empty or the note is pending deletion
        """
        new_title = validate_title(title)
        new_tags = normalize_tags(tags) if tags is not None else None

        with self.db.note_lock(local_id):
            note = self.db.get_note(local_id)
            if note is None:
                logger.info(f"Edit ignored; note {local_id} not found")
                return None
            if note.state is NoteState.PENDING_DELETE:
                raise ValidationError("local_id", "note is pending deletion")

            edited = apply_edit(
                note,
                new_title,
                new_tags if new_tags is not None else note.tags,
                utc_now(),
            )
            self.db.put_note(edited)

            if edited.state is NoteState.LOCAL_ONLY:
                return edited
            if not self.engine.is_online():
                logger.info(f"Offline; edit to note {local_id} will be pushed on next refresh")
                return edited
            return self.engine.push_edit(local_id)

    def get_note(self, local_id: str) -> Optional[Note]:
        return self.db.get_note(local_id)

    def list_notes(self, tags: Optional[Iterable[str]] = None) -> List[Note]:
        """List notes newest first, tombstones included.

        Args:
            tags: If given, only notes carrying every one of these tags
        """
        notes = self.db.list_notes()
        wanted = set(normalize_tags(tags)) if tags else set()
        if wanted:
            notes = [n for n in notes if wanted <= n.tag_set]
        return sorted(notes, key=lambda n: n.created_at, reverse=True)

    def available_tags(self) -> List[str]:
        """Sorted union of tags across all local notes."""
        tags = set()
        for note in self.db.list_notes():
            tags.update(note.tags)
        return sorted(tags)

    def refresh(self) -> RefreshResult:
        return self.engine.refresh()
