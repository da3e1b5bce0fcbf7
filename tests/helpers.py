"""Shared test helpers for notesync tests."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from notesync.core.models import Note, PendingState, RemoteNote
from notesync.core.remote import NetworkError, NotFoundError, RemoteStore
from notesync.core.timestamp_utils import utc_now

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class FakeRemoteStore(RemoteStore):
    """In-memory Remote Store.

    Behaves like the reference server (assigns IDs, stamps updated_at) and
    lets tests inject failures per operation:

        fake.fail("create")                 # next create raises NetworkError
        fake.fail("update", NotFoundError("x"), times=2)
        fake.lose_create_responses = True   # create lands, response is lost

    The server_* helpers mutate the server directly, as another client would.
    """

    def __init__(self) -> None:
        self.notes: Dict[str, RemoteNote] = {}
        self.calls: List[Tuple[str, Optional[str]]] = []
        self.reachable = True
        self.lose_create_responses = False
        self._failures: Dict[str, List[Exception]] = defaultdict(list)
        self._counter = 0

    # ===== Failure injection =====

    def fail(self, op: str, exc: Optional[Exception] = None, times: int = 1) -> None:
        for _ in range(times):
            self._failures[op].append(exc or NetworkError(f"injected {op} failure"))

    def _maybe_fail(self, op: str) -> None:
        if not self.reachable:
            raise NetworkError("server unreachable")
        if self._failures[op]:
            raise self._failures[op].pop(0)

    def _next_id(self) -> str:
        self._counter += 1
        return f"srv-{self._counter:04d}"

    # ===== RemoteStore =====

    def create_note(self, note: Note) -> str:
        self.calls.append(("create", note.local_id))
        self._maybe_fail("create")
        server_id = self._next_id()
        self.notes[server_id] = RemoteNote(
            server_id=server_id,
            title=note.title,
            tags=note.tags,
            created_at=note.created_at,
            updated_at=utc_now(),
            client_local_id=note.local_id,
        )
        if self.lose_create_responses:
            raise NetworkError("response lost")
        return server_id

    def list_notes(self) -> List[RemoteNote]:
        self.calls.append(("list", None))
        self._maybe_fail("list")
        return sorted(
            self.notes.values(),
            key=lambda n: (n.created_at or EPOCH, n.server_id),
            reverse=True,
        )

    def update_note(self, server_id: str, title: str, tags: Sequence[str]) -> None:
        self.calls.append(("update", server_id))
        self._maybe_fail("update")
        if server_id not in self.notes:
            raise NotFoundError(server_id)
        self.server_edit(server_id, title, tuple(tags))

    def delete_note(self, server_id: str) -> None:
        self.calls.append(("delete", server_id))
        self._maybe_fail("delete")
        if server_id not in self.notes:
            raise NotFoundError(server_id)
        del self.notes[server_id]

    def ping(self) -> bool:
        return self.reachable

    # ===== Other-channel helpers =====

    def server_create(
        self,
        title: str,
        tags: Sequence[str] = (),
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
        client_local_id: Optional[str] = None,
    ) -> str:
        server_id = self._next_id()
        now = utc_now()
        self.notes[server_id] = RemoteNote(
            server_id=server_id,
            title=title,
            tags=tuple(tags),
            created_at=created_at or now,
            updated_at=updated_at or now,
            client_local_id=client_local_id,
        )
        return server_id

    def server_edit(
        self,
        server_id: str,
        title: str,
        tags: Optional[Sequence[str]] = None,
        updated_at: Optional[datetime] = None,
    ) -> None:
        current = self.notes[server_id]
        self.notes[server_id] = RemoteNote(
            server_id=server_id,
            title=title,
            tags=tuple(tags) if tags is not None else current.tags,
            created_at=current.created_at,
            updated_at=updated_at or utc_now(),
            client_local_id=current.client_local_id,
        )

    def server_delete(self, server_id: str) -> None:
        del self.notes[server_id]

    def count_calls(self, op: str) -> int:
        return sum(1 for name, _ in self.calls if name == op)


def synced_note(
    local_id: str,
    server_id: str,
    title: str = "Synced note",
    tags: Tuple[str, ...] = (),
    updated_at: Optional[datetime] = None,
) -> Note:
    """Build a note that is already confirmed by the server."""
    now = updated_at or utc_now()
    return Note(
        local_id=local_id,
        title=title,
        tags=tags,
        created_at=now - timedelta(minutes=1),
        updated_at=now,
        server_id=server_id,
        pending_delete=PendingState.CLEAR,
        pending_edit=PendingState.CLEAR,
    )


def snapshot(db) -> List[Tuple]:
    """Comparable view of the Local Store contents, timestamps included."""
    return [
        (n.local_id, n.server_id, n.title, n.tags, n.updated_at,
         n.pending_delete, n.pending_edit)
        for n in db.list_notes()
    ]
