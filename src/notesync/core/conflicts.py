"""Conflict detection and resolution for notesync.

This module handles:
- Detecting near-simultaneous edits between the local and server replicas
- Recording conflicts so the losing side's content is never lost silently
- Listing and resolving recorded conflicts

Conflict Types:
- note_content: A pending local edit and a server edit landed within the
  conflict window with different content. The local edit still wins.
- remote_delete: The server no longer has a note the client still holds.

Detection is a timestamp-proximity heuristic. It does not attempt a merge.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

from uuid6 import uuid7

from .database import Database
from .models import Note, NoteState, PendingState, RemoteNote, new_local_id
from .timestamp_utils import parse_iso, seconds_between, to_iso, utc_now
from .validation import ValidationError

logger = logging.getLogger(__name__)

__all__ = [
    "ConflictType",
    "ResolutionChoice",
    "Conflict",
    "ConflictManager",
    "detect_conflict",
    "DEFAULT_CONFLICT_WINDOW",
]

DEFAULT_CONFLICT_WINDOW = 1.0


class ConflictType(Enum):
    """Types of sync conflicts."""

    NOTE_CONTENT = "note_content"
    REMOTE_DELETE = "remote_delete"


class ResolutionChoice(Enum):
    """How to resolve a conflict."""

    KEEP_LOCAL = "keep_local"
    KEEP_REMOTE = "keep_remote"


@dataclass
class Conflict:
    """A recorded disagreement between the two replicas."""

    id: str
    conflict_type: ConflictType
    local_id: str
    server_id: Optional[str]
    local_title: str
    local_tags: Tuple[str, ...]
    local_updated_at: Optional[datetime]
    remote_title: Optional[str]
    remote_tags: Optional[Tuple[str, ...]]
    remote_updated_at: Optional[datetime]
    created_at: datetime
    resolved_at: Optional[datetime] = None
    resolution: Optional[ResolutionChoice] = None

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None


def detect_conflict(
    local: Note,
    remote: RemoteNote,
    window_seconds: float = DEFAULT_CONFLICT_WINDOW,
) -> bool:
    """Check whether a pending local edit collides with a server edit.

    A conflict needs all three: the local note has a pending edit, its title
    or tag set differs from the server copy, and the two updated_at values
    are less than window_seconds apart.
    """
    if local.pending_edit is not PendingState.PENDING:
        return False
    if local.updated_at is None or remote.updated_at is None:
        return False
    if local.has_same_content(remote.title, remote.tags):
        return False
    return seconds_between(local.updated_at, remote.updated_at) < window_seconds


class ConflictManager:
    """Records, lists and resolves sync conflicts."""

    def __init__(self, db: Database) -> None:
        """Initialize conflict manager.

        Args:
            db: Local Store holding the conflicts table
        """
        self.db = db

    def _record(
        self,
        conflict_type: ConflictType,
        local: Note,
        remote: Optional[RemoteNote],
    ) -> Conflict:
        conflict = Conflict(
            id=uuid7().hex,
            conflict_type=conflict_type,
            local_id=local.local_id,
            server_id=local.server_id,
            local_title=local.title,
            local_tags=local.tags,
            local_updated_at=local.updated_at,
            remote_title=remote.title if remote else None,
            remote_tags=remote.tags if remote else None,
            remote_updated_at=remote.updated_at if remote else None,
            created_at=utc_now(),
        )
        self.db.create_conflict({
            "id": conflict.id,
            "conflict_type": conflict_type.value,
            "local_id": conflict.local_id,
            "server_id": conflict.server_id,
            "local_title": conflict.local_title,
            "local_tags": conflict.local_tags,
            "local_updated_at": to_iso(conflict.local_updated_at),
            "remote_title": conflict.remote_title,
            "remote_tags": conflict.remote_tags,
            "remote_updated_at": to_iso(conflict.remote_updated_at),
            "created_at": to_iso(conflict.created_at),
        })
        return conflict

    def record_content_conflict(self, local: Note, remote: RemoteNote) -> Conflict:
        """Record a near-simultaneous edit. The local edit is still pushed."""
        logger.warning(
            f"Conflict detected for note {local.server_id}: "
            f"local=({local.title!r}, {list(local.tags)}, {to_iso(local.updated_at)}) "
            f"server=({remote.title!r}, {list(remote.tags)}, {to_iso(remote.updated_at)})"
        )
        return self._record(ConflictType.NOTE_CONTENT, local, remote)

    def record_remote_delete(self, local: Note) -> Conflict:
        """Keep a copy of local content for a note the server no longer has."""
        logger.warning(
            f"Note {local.server_id} was deleted on the server while it had "
            f"unsynced local changes; local copy kept in conflict record"
        )
        return self._record(ConflictType.REMOTE_DELETE, local, None)

    @staticmethod
    def _from_row(row: Dict) -> Conflict:
        return Conflict(
            id=row["id"],
            conflict_type=ConflictType(row["conflict_type"]),
            local_id=row["local_id"],
            server_id=row["server_id"],
            local_title=row["local_title"],
            local_tags=tuple(row["local_tags"]),
            local_updated_at=parse_iso(row["local_updated_at"]),
            remote_title=row["remote_title"],
            remote_tags=tuple(row["remote_tags"]) if row["remote_tags"] is not None else None,
            remote_updated_at=parse_iso(row["remote_updated_at"]),
            created_at=parse_iso(row["created_at"]),
            resolved_at=parse_iso(row["resolved_at"]),
            resolution=ResolutionChoice(row["resolution"]) if row["resolution"] else None,
        )

    def get_unresolved_count(self) -> Dict[str, int]:
        """Get count of unresolved conflicts by type."""
        return self.db.get_unresolved_conflict_counts()

    def get_conflicts(self, include_resolved: bool = False) -> List[Conflict]:
        return [self._from_row(row) for row in self.db.get_conflicts(include_resolved)]

    def get_conflict(self, conflict_id: str) -> Optional[Conflict]:
        row = self.db.get_conflict(conflict_id)
        return self._from_row(row) if row else None

    def resolve(self, conflict_id: str, choice: ResolutionChoice) -> Conflict:
        """Resolve a conflict.

        note_content:
            KEEP_LOCAL  - acknowledge; the local edit was already pushed
            KEEP_REMOTE - restore the server's title/tags locally and mark
                          them as a pending edit so the next refresh pushes them
        remote_delete:
            KEEP_LOCAL  - restore the content as a new local-only note, which
                          the next refresh creates on the server
            KEEP_REMOTE - acknowledge the deletion

        Raises:
            ValidationError: If the conflict does not exist or is already resolved
        """
        conflict = self.get_conflict(conflict_id)
        if conflict is None:
            raise ValidationError("conflict_id", f"conflict {conflict_id} not found")
        if conflict.is_resolved:
            raise ValidationError("conflict_id", "conflict is already resolved")

        if conflict.conflict_type is ConflictType.NOTE_CONTENT:
            if choice is ResolutionChoice.KEEP_REMOTE:
                self._restore_remote_content(conflict)
        elif choice is ResolutionChoice.KEEP_LOCAL:
            self._restore_deleted_note(conflict)

        resolved_at = utc_now()
        if not self.db.resolve_conflict(conflict_id, choice.value, to_iso(resolved_at)):
            raise ValidationError("conflict_id", "conflict is already resolved")
        logger.info(f"Resolved {conflict.conflict_type.value} conflict {conflict_id}: {choice.value}")
        return dataclasses.replace(conflict, resolved_at=resolved_at, resolution=choice)

    def _restore_remote_content(self, conflict: Conflict) -> None:
        with self.db.note_lock(conflict.local_id):
            note = self.db.get_note(conflict.local_id)
            if note is None or note.state in (NoteState.LOCAL_ONLY, NoteState.PENDING_DELETE):
                logger.info(f"Note {conflict.local_id} changed since the conflict; nothing to restore")
                return
            self.db.put_note(dataclasses.replace(
                note,
                title=conflict.remote_title,
                tags=conflict.remote_tags or (),
                pending_edit=PendingState.PENDING,
                updated_at=utc_now(),
            ))

    def _restore_deleted_note(self, conflict: Conflict) -> None:
        now = utc_now()
        restored = Note(
            local_id=new_local_id(),
            title=conflict.local_title,
            tags=conflict.local_tags,
            created_at=now,
            updated_at=now,
        )
        self.db.put_note(restored)
        logger.info(f"Restored deleted note as {restored.local_id}")
