"""Data models for notesync.

This module defines immutable dataclasses representing the entities that
move between the two replicas: the local Note and the server's RemoteNote.

Local IDs are UUID7 hex strings (32 characters, no hyphens). Server IDs are
opaque strings assigned by the Remote Store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import FrozenSet, Optional, Tuple

from uuid6 import uuid7

from .validation import ValidationError


def new_local_id() -> str:
    """Generate a fresh local note ID (UUID7 hex, time-ordered)."""
    return uuid7().hex


class PendingState(Enum):
    """Tri-state marker for an offline mutation awaiting remote confirmation."""

    CLEAR = "clear"
    PENDING = "pending"
    NOT_APPLICABLE = "n/a"


class NoteState(Enum):
    """Lifecycle state of a note, derived from its sync fields."""

    LOCAL_ONLY = "local_only"
    SYNCED = "synced"
    PENDING_EDIT = "pending_edit"
    PENDING_DELETE = "pending_delete"
    DESTROYED = "destroyed"


@dataclass(frozen=True)
class Note:
    """Represents a note in the local replica.

    Notes are never mutated in place. Every lifecycle transition builds a new
    instance with dataclasses.replace().

    Attributes:
        local_id: Client-generated UUID7 hex, stable for the note's lifetime
        title: Non-empty note title
        tags: Normalised tags in display order (lowercase, trimmed, unique)
        created_at: When the note was created (UTC, never changes)
        updated_at: When the note was last mutated, locally or remotely
        server_id: ID assigned by the Remote Store (None until confirmed)
        pending_delete: Offline delete awaiting remote confirmation
        pending_edit: Offline or failed edit awaiting remote confirmation
    """

    local_id: str
    title: str
    tags: Tuple[str, ...]
    created_at: datetime
    updated_at: datetime
    server_id: Optional[str] = None
    pending_delete: PendingState = PendingState.NOT_APPLICABLE
    pending_edit: PendingState = PendingState.NOT_APPLICABLE

    def __post_init__(self) -> None:
        if self.server_id is None:
            # Local-only notes mutate and delete in place
            if (self.pending_delete is not PendingState.NOT_APPLICABLE
                    or self.pending_edit is not PendingState.NOT_APPLICABLE):
                raise ValidationError(
                    "server_id", "pending flags require a server counterpart"
                )
        elif (self.pending_delete is PendingState.NOT_APPLICABLE
                or self.pending_edit is PendingState.NOT_APPLICABLE):
            raise ValidationError(
                "server_id", "confirmed notes must track pending flags"
            )

    @property
    def state(self) -> NoteState:
        """Lifecycle state; a pending delete takes precedence over a pending edit."""
        if self.server_id is None:
            return NoteState.LOCAL_ONLY
        if self.pending_delete is PendingState.PENDING:
            return NoteState.PENDING_DELETE
        if self.pending_edit is PendingState.PENDING:
            return NoteState.PENDING_EDIT
        return NoteState.SYNCED

    @property
    def tag_set(self) -> FrozenSet[str]:
        return frozenset(self.tags)

    @property
    def sync_label(self) -> str:
        """Human readable sync indicator for the presentation layer."""
        return _SYNC_LABELS[self.state]

    def has_same_content(self, title: str, tags: Tuple[str, ...]) -> bool:
        """Compare title and tags, ignoring tag order."""
        return self.title == title and self.tag_set == frozenset(tags)


_SYNC_LABELS = {
    NoteState.LOCAL_ONLY: "Note pending sync",
    NoteState.SYNCED: "",
    NoteState.PENDING_EDIT: "Edit pending sync",
    NoteState.PENDING_DELETE: "Deletion pending sync",
    NoteState.DESTROYED: "",
}


@dataclass(frozen=True)
class RemoteNote:
    """A note as reported by the Remote Store.

    Attributes:
        server_id: Server-assigned identifier
        title: Note title held by the server
        tags: Tags held by the server
        created_at: Server copy of the creation timestamp
        updated_at: Last server-side mutation time
        client_local_id: local_id round-tripped from the creating client
            (None for notes created through another channel)
    """

    server_id: str
    title: str
    tags: Tuple[str, ...] = field(default_factory=tuple)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    client_local_id: Optional[str] = None

    @property
    def tag_set(self) -> FrozenSet[str]:
        return frozenset(self.tags)
