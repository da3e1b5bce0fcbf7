"""Sync engine for notesync.

This module reconciles the local replica (Database) with the authoritative
server replica (RemoteStore). A refresh runs two named phases:

1. Push: send local-only creates and confirmed tombstone deletes, checked
   against a snapshot of the server list taken before pushing.
2. Pull/merge: fetch the post-push server list, then
   - adopt pass: stamp server IDs on just-created local notes, insert notes
     created through other channels
   - reconcile pass: push pending local edits (local wins), otherwise take
     the server's title/tags (server wins)
   - prune pass: remove local copies of notes deleted on the server

Every note-level step re-reads the note under Database.note_lock() and
writes it back in one transaction, so a pass can be interrupted and re-run
safely. Transitions are pure functions that return new Note instances.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from .config import Config
from .conflicts import DEFAULT_CONFLICT_WINDOW, ConflictManager, detect_conflict
from .connectivity import ConnectivityProbe
from .database import Database
from .models import Note, NoteState, PendingState, RemoteNote, new_local_id
from .remote import NetworkError, NotFoundError, RemoteStore, RemoteStoreError
from .timestamp_utils import utc_now

logger = logging.getLogger(__name__)

__all__ = [
    "RefreshResult",
    "SyncEngine",
    "mark_created",
    "mark_pending_delete",
    "apply_edit",
    "confirm_edit",
    "adopt_server_copy",
    "note_from_remote",
    "accept_server_content",
    "plan_adopt",
]


@dataclass
class RefreshResult:
    """Result of a refresh (or of a single phase)."""

    success: bool
    created: int = 0  # Local-only notes created remotely
    deleted: int = 0  # Tombstones confirmed and removed
    pushed_edits: int = 0  # Pending edits accepted by the server
    adopted: int = 0  # Local notes stamped with a server ID by the adopt pass
    inserted: int = 0  # Server notes new to this device
    updated: int = 0  # Local notes that took the server's content
    pruned: int = 0  # Local notes removed because the server deleted them
    conflicts: int = 0
    skipped: bool = False  # Another refresh was in flight
    offline: bool = False
    errors: List[str] = None

    def __post_init__(self):
        if self.errors is None:
            self.errors = []


# ===== Lifecycle transitions (pure) =====


def mark_created(note: Note, server_id: str, now: datetime) -> Note:
    """LOCAL_ONLY -> SYNCED after a successful remote create."""
    return dataclasses.replace(
        note,
        server_id=server_id,
        updated_at=now,
        pending_delete=PendingState.CLEAR,
        pending_edit=PendingState.CLEAR,
    )


def mark_pending_delete(note: Note, now: datetime) -> Note:
    """SYNCED/PENDING_EDIT -> PENDING_DELETE (tombstone)."""
    return dataclasses.replace(note, pending_delete=PendingState.PENDING, updated_at=now)


def apply_edit(
    note: Note, title: str, tags: Tuple[str, ...], now: datetime
) -> Note:
    """Apply new content; confirmed notes enter PENDING_EDIT until pushed."""
    if note.server_id is None:
        return dataclasses.replace(note, title=title, tags=tags, updated_at=now)
    return dataclasses.replace(
        note, title=title, tags=tags, updated_at=now, pending_edit=PendingState.PENDING
    )


def confirm_edit(note: Note, now: datetime) -> Note:
    """PENDING_EDIT -> SYNCED after the server accepted the edit."""
    return dataclasses.replace(note, pending_edit=PendingState.CLEAR, updated_at=now)


def adopt_server_copy(note: Note, remote: RemoteNote) -> Note:
    """Stamp a just-created local note with its server identity.

    The server is authoritative for tags and updated_at of a note the
    client has just created. If the local title or tag set no longer matches
    the server copy, the note was edited after its create reached the server:
    the local content is kept and marked as a pending edit.
    """
    if not note.has_same_content(remote.title, remote.tags):
        return dataclasses.replace(
            note,
            server_id=remote.server_id,
            pending_delete=PendingState.CLEAR,
            pending_edit=PendingState.PENDING,
        )
    return dataclasses.replace(
        note,
        server_id=remote.server_id,
        tags=remote.tags,
        updated_at=remote.updated_at or note.updated_at,
        pending_delete=PendingState.CLEAR,
        pending_edit=PendingState.CLEAR,
    )


def note_from_remote(remote: RemoteNote, now: datetime) -> Note:
    """Build a local replica entry for a note created through another channel."""
    return Note(
        local_id=new_local_id(),
        title=remote.title,
        tags=remote.tags,
        created_at=remote.created_at or now,
        updated_at=remote.updated_at or now,
        server_id=remote.server_id,
        pending_delete=PendingState.CLEAR,
        pending_edit=PendingState.CLEAR,
    )


def accept_server_content(note: Note, remote: RemoteNote) -> Note:
    """Server wins: take title, tags and updated_at from the server copy."""
    updated_at = remote.updated_at or note.updated_at
    if note.has_same_content(remote.title, remote.tags) and note.updated_at == updated_at:
        return note
    return dataclasses.replace(
        note, title=remote.title, tags=remote.tags, updated_at=updated_at
    )


def plan_adopt(
    remote: RemoteNote,
    by_server_id: Dict[str, Note],
    by_local_id: Dict[str, Note],
    now: datetime,
) -> Optional[Note]:
    """Decide what the adopt pass writes for one server note.

    Returns None when the server note is already matched by server_id.
    Returns the stamped local note when a local-only note carries the
    round-tripped local_id, otherwise a brand-new local entry.
    """
    if remote.server_id in by_server_id:
        return None
    if remote.client_local_id:
        match = by_local_id.get(remote.client_local_id)
        if match is not None and match.server_id is None:
            return adopt_server_copy(match, remote)
    return note_from_remote(remote, now)


class SyncEngine:
    """Reconciles the local replica with the Remote Store.

    Only one refresh runs at a time; a refresh requested while another is in
    flight returns immediately with skipped=True.
    """

    def __init__(
        self,
        db: Database,
        remote: RemoteStore,
        connectivity: ConnectivityProbe,
        conflict_window: float = DEFAULT_CONFLICT_WINDOW,
        propagate_remote_deletes: bool = True,
    ) -> None:
        """Initialize sync engine.

        Args:
            db: Local Store
            remote: Remote Store
            connectivity: Probe consulted before any network call
            conflict_window: Seconds within which differing edits are flagged
            propagate_remote_deletes: Remove local copies of notes the server deleted
        """
        self.db = db
        self.remote = remote
        self.connectivity = connectivity
        self.conflicts = ConflictManager(db)
        self.conflict_window = conflict_window
        self.propagate_remote_deletes = propagate_remote_deletes
        self._refresh_lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        db: Database,
        config: Config,
        remote: RemoteStore,
        connectivity: ConnectivityProbe,
    ) -> "SyncEngine":
        return cls(
            db,
            remote,
            connectivity,
            conflict_window=config.get_conflict_window(),
            propagate_remote_deletes=config.propagate_remote_deletes(),
        )

    def is_online(self) -> bool:
        return self.connectivity.is_online()

    @property
    def is_refreshing(self) -> bool:
        return self._refresh_lock.locked()

    def _transition(
        self, local_id: str, fn: Callable[[Optional[Note]], Optional[Note]]
    ) -> Optional[Note]:
        """Read-modify-write one note under its lock.

        fn receives the current note (or None) and returns the note to store,
        or None to leave the store untouched.
        """
        with self.db.note_lock(local_id):
            current = self.db.get_note(local_id)
            new = fn(current)
            if new is not None and new != current:
                self.db.put_note(new)
            return new

    # ===== Per-note push operations =====

    def push_create(
        self, local_id: str, errors: Optional[List[str]] = None
    ) -> Optional[Note]:
        """Create a local-only note on the server.

        Returns the stored note: stamped with its server_id on success,
        unchanged on network failure, None if the note no longer exists.
        """
        with self.db.note_lock(local_id):
            note = self.db.get_note(local_id)
            if note is None or note.server_id is not None:
                return note
            try:
                server_id = self.remote.create_note(note)
            except RemoteStoreError as e:
                logger.warning(f"Failed to create note {local_id} remotely: {e}")
                if errors is not None:
                    errors.append(f"Create {local_id}: {e}")
                return note
            created = mark_created(note, server_id, utc_now())
            self.db.put_note(created)
            logger.info(f"Created note {local_id} remotely as {server_id}")
            return created

    def push_delete(
        self,
        local_id: str,
        exists_remotely: bool = True,
        errors: Optional[List[str]] = None,
    ) -> bool:
        """Delete a note remotely, then remove it locally.

        Local-only notes are removed without a network call, as are notes the
        caller already knows are gone from the server. If the remote call
        fails the note is kept as a PENDING_DELETE tombstone.

        Returns:
            True if the note is gone locally
        """
        with self.db.note_lock(local_id):
            note = self.db.get_note(local_id)
            if note is None:
                return True
            if note.server_id is not None and exists_remotely:
                try:
                    self.remote.delete_note(note.server_id)
                except NotFoundError:
                    logger.info(f"Note {note.server_id} already deleted on server")
                except NetworkError as e:
                    logger.warning(f"Failed to delete note {note.server_id} remotely: {e}")
                    if errors is not None:
                        errors.append(f"Delete {local_id}: {e}")
                    if note.state is not NoteState.PENDING_DELETE:
                        self.db.put_note(mark_pending_delete(note, utc_now()))
                    return False
            self.db.delete_note(local_id)
            logger.info(f"Deleted note {local_id}")
            return True

    def push_edit(
        self, local_id: str, errors: Optional[List[str]] = None
    ) -> Optional[Note]:
        """Send a pending edit to the server.

        A NotFoundError means the server no longer has the note: the pending
        flag is cleared (nothing left to retry) and the local content is kept
        in a remote_delete conflict record.
        """
        with self.db.note_lock(local_id):
            note = self.db.get_note(local_id)
            if note is None or note.state is not NoteState.PENDING_EDIT:
                return note
            try:
                self.remote.update_note(note.server_id, note.title, note.tags)
            except NotFoundError:
                self.conflicts.record_remote_delete(note)
                converged = dataclasses.replace(note, pending_edit=PendingState.CLEAR)
                self.db.put_note(converged)
                return converged
            except NetworkError as e:
                logger.warning(f"Failed to push edit for note {note.server_id}: {e}")
                if errors is not None:
                    errors.append(f"Edit {local_id}: {e}")
                return note
            confirmed = confirm_edit(note, utc_now())
            self.db.put_note(confirmed)
            logger.info(f"Pushed edit for note {note.server_id}")
            return confirmed

    # ===== Refresh =====

    def refresh(self) -> RefreshResult:
        """Run a full reconciliation pass: push phase, then pull/merge phase.

        Refresh-level failures (the list call fails) abort the pass but keep
        whatever per-note progress was already made.
        """
        if not self._refresh_lock.acquire(blocking=False):
            logger.info("Refresh already in progress; request coalesced")
            return RefreshResult(success=False, skipped=True)

        try:
            if not self.connectivity.is_online():
                logger.info("Offline; refresh skipped")
                return RefreshResult(success=False, offline=True)

            result = RefreshResult(success=True)
            logger.info("Starting refresh")

            try:
                snapshot = self.remote.list_notes()
            except RemoteStoreError as e:
                return self._abort(result, f"Fetching server notes failed: {e}")
            self.push_phase(snapshot, result)

            prunable = {n.server_id for n in self.db.list_notes() if n.server_id}
            try:
                server_notes = self.remote.list_notes()
            except RemoteStoreError as e:
                return self._abort(result, f"Fetching server notes after push failed: {e}")
            self.pull_phase(server_notes, result, prunable_server_ids=prunable)

            if result.errors:
                result.success = False
            logger.info(
                f"Refresh complete: created={result.created}, deleted={result.deleted}, "
                f"pushed_edits={result.pushed_edits}, adopted={result.adopted}, "
                f"inserted={result.inserted}, updated={result.updated}, "
                f"pruned={result.pruned}, conflicts={result.conflicts}"
            )
            return result
        finally:
            self._refresh_lock.release()

    @staticmethod
    def _abort(result: RefreshResult, message: str) -> RefreshResult:
        logger.error(message)
        result.success = False
        result.errors.append(message)
        return result

    def push_phase(
        self,
        server_notes: Iterable[RemoteNote],
        result: Optional[RefreshResult] = None,
    ) -> RefreshResult:
        """Push local-only creates and tombstone deletes.

        Args:
            server_notes: Server list fetched before pushing
            result: Accumulator to update (a new one is created if None)
        """
        if result is None:
            result = RefreshResult(success=True)
        snapshot = list(server_notes)
        server_ids = {r.server_id for r in snapshot}
        claimed_local_ids = {r.client_local_id for r in snapshot if r.client_local_id}

        for note in self.db.list_notes():
            if note.state is NoteState.PENDING_DELETE:
                exists = note.server_id in server_ids
                if not exists:
                    logger.info(f"Note {note.server_id} already gone from server; dropping tombstone")
                if self.push_delete(note.local_id, exists_remotely=exists, errors=result.errors):
                    result.deleted += 1
            elif note.state is NoteState.LOCAL_ONLY:
                if note.local_id in claimed_local_ids:
                    # An earlier create reached the server; the adopt pass will stamp it
                    logger.debug(f"Note {note.local_id} already on server; not creating again")
                    continue
                pushed = self.push_create(note.local_id, errors=result.errors)
                if pushed is not None and pushed.server_id is not None:
                    result.created += 1

        if result.errors:
            result.success = False
        return result

    def pull_phase(
        self,
        server_notes: Iterable[RemoteNote],
        result: Optional[RefreshResult] = None,
        prunable_server_ids: Optional[Set[str]] = None,
    ) -> RefreshResult:
        """Merge the post-push server list into the local replica.

        Args:
            server_notes: Server list fetched after the push phase
            result: Accumulator to update (a new one is created if None)
            prunable_server_ids: Server IDs known locally when the list was
                fetched; only these may be pruned. None means all.
        """
        if result is None:
            result = RefreshResult(success=True)
        server_notes = list(server_notes)

        self._adopt_pass(server_notes, result)
        self._reconcile_pass(server_notes, result)
        if self.propagate_remote_deletes:
            self._prune_pass(server_notes, result, prunable_server_ids)

        if result.errors:
            result.success = False
        return result

    def _adopt_pass(self, server_notes: List[RemoteNote], result: RefreshResult) -> None:
        local_notes = self.db.list_notes()
        by_server_id = {n.server_id: n for n in local_notes if n.server_id}
        by_local_id = {n.local_id: n for n in local_notes}

        for remote in server_notes:
            planned = plan_adopt(remote, by_server_id, by_local_id, utc_now())
            if planned is None:
                continue

            if planned.local_id in by_local_id:
                def stamp(current: Optional[Note], remote: RemoteNote = remote) -> Optional[Note]:
                    if current is None or current.server_id is not None:
                        return None
                    return adopt_server_copy(current, remote)

                stored = self._transition(planned.local_id, stamp)
                if stored is None or stored.server_id != remote.server_id:
                    continue
                result.adopted += 1
                logger.debug(f"Adopted server id {remote.server_id} for note {stored.local_id}")
            else:
                if self.db.get_note_by_server_id(remote.server_id) is not None:
                    continue
                stored = planned
                self.db.put_note(stored)
                result.inserted += 1
                logger.debug(f"Inserted server note {remote.server_id} as {stored.local_id}")

            by_server_id[remote.server_id] = stored
            by_local_id[stored.local_id] = stored

    def _reconcile_pass(self, server_notes: List[RemoteNote], result: RefreshResult) -> None:
        by_server_id = {n.server_id: n for n in self.db.list_notes() if n.server_id}

        for remote in server_notes:
            local = by_server_id.get(remote.server_id)
            if local is None or local.state is NoteState.PENDING_DELETE:
                continue

            if local.state is NoteState.PENDING_EDIT:
                if detect_conflict(local, remote, self.conflict_window):
                    self.conflicts.record_content_conflict(local, remote)
                    result.conflicts += 1
                pushed = self.push_edit(local.local_id, errors=result.errors)
                if pushed is not None and pushed.state is NoteState.SYNCED:
                    result.pushed_edits += 1
                continue

            def take_server(current: Optional[Note], remote: RemoteNote = remote) -> Optional[Note]:
                if current is None or current.state is not NoteState.SYNCED:
                    return None
                return accept_server_content(current, remote)

            before = local
            after = self._transition(local.local_id, take_server)
            if after is not None and after != before:
                result.updated += 1

    def _prune_pass(
        self,
        server_notes: List[RemoteNote],
        result: RefreshResult,
        prunable_server_ids: Optional[Set[str]],
    ) -> None:
        on_server = {r.server_id for r in server_notes}

        for note in self.db.list_notes():
            if note.server_id is None or note.server_id in on_server:
                continue
            if prunable_server_ids is not None and note.server_id not in prunable_server_ids:
                continue
            with self.db.note_lock(note.local_id):
                current = self.db.get_note(note.local_id)
                if current is None or current.server_id != note.server_id:
                    continue
                if current.state is NoteState.PENDING_EDIT:
                    self.conflicts.record_remote_delete(current)
                    result.conflicts += 1
                self.db.delete_note(current.local_id)
            result.pruned += 1
            logger.info(f"Note {note.server_id} was deleted on the server; removed locally")
