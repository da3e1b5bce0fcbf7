"""Local Store for notesync.

This module provides the durable on-device replica using SQLite. Notes are
keyed by their client-generated local_id; every write is a single committed
transaction so a note-level operation either fully applies or not at all.

The store also holds sync conflict records (see conflicts.py).
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import weakref
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from .models import Note, NoteState, PendingState
from .timestamp_utils import parse_iso, to_iso

logger = logging.getLogger(__name__)

__all__ = ["Database", "LocalStoreError"]


SCHEMA = """
CREATE TABLE IF NOT EXISTS notes (
    local_id TEXT PRIMARY KEY,
    server_id TEXT UNIQUE,
    title TEXT NOT NULL,
    tags TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    pending_delete TEXT NOT NULL,
    pending_edit TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_notes_created_at ON notes(created_at);

CREATE TABLE IF NOT EXISTS conflicts (
    id TEXT PRIMARY KEY,
    conflict_type TEXT NOT NULL,
    local_id TEXT NOT NULL,
    server_id TEXT,
    local_title TEXT NOT NULL,
    local_tags TEXT NOT NULL,
    local_updated_at TEXT,
    remote_title TEXT,
    remote_tags TEXT,
    remote_updated_at TEXT,
    created_at TEXT NOT NULL,
    resolved_at TEXT,
    resolution TEXT
);

CREATE INDEX IF NOT EXISTS idx_conflicts_unresolved ON conflicts(resolved_at);
"""


class LocalStoreError(Exception):
    """Raised when the Local Store cannot complete an operation."""


class Database:
    """SQLite-backed Local Store.

    Thread-safe: a single connection is shared behind a re-entrant lock.
    note_lock() gives callers per-note mutual exclusion for read-modify-write
    sequences that span network calls.
    """

    def __init__(self, db_path: Union[Path, str]) -> None:
        """Initialize database connection.

        Args:
            db_path: Path to the SQLite database file, or ':memory:' for in-memory
        """
        self.db_path = str(db_path)
        self._lock = threading.RLock()
        self._note_locks: weakref.WeakValueDictionary = weakref.WeakValueDictionary()
        self._note_locks_guard = threading.Lock()
        try:
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            if self.db_path != ":memory:":
                self.conn.execute("PRAGMA journal_mode=WAL")
            self.conn.executescript(SCHEMA)
            self.conn.commit()
        except sqlite3.Error as e:
            raise LocalStoreError(f"Cannot open local store {self.db_path}: {e}") from e
        logger.info(f"Opened local store at {self.db_path}")

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        with self._lock:
            try:
                cursor = self.conn.cursor()
                yield cursor
                self.conn.commit()
            except sqlite3.Error as e:
                self.conn.rollback()
                logger.error(f"Local store error: {e}")
                raise LocalStoreError(str(e)) from e

    @contextmanager
    def note_lock(self, local_id: str) -> Iterator[None]:
        """Serialise read-modify-write sequences on a single note.

        A note's lock lives only while some caller holds it.
        """
        with self._note_locks_guard:
            lock = self._note_locks.get(local_id)
            if lock is None:
                lock = threading.RLock()
                self._note_locks[local_id] = lock
        with lock:
            yield

    # ===== Row conversion =====

    @staticmethod
    def _row_to_note(row: sqlite3.Row) -> Note:
        return Note(
            local_id=row["local_id"],
            title=row["title"],
            tags=tuple(json.loads(row["tags"])),
            created_at=parse_iso(row["created_at"]),
            updated_at=parse_iso(row["updated_at"]),
            server_id=row["server_id"],
            pending_delete=PendingState(row["pending_delete"]),
            pending_edit=PendingState(row["pending_edit"]),
        )

    # ===== Notes =====

    def get_note(self, local_id: str) -> Optional[Note]:
        """Get a note by local ID, or None if absent."""
        with self._transaction() as cursor:
            cursor.execute("SELECT * FROM notes WHERE local_id = ?", (local_id,))
            row = cursor.fetchone()
        return self._row_to_note(row) if row else None

    def get_note_by_server_id(self, server_id: str) -> Optional[Note]:
        with self._transaction() as cursor:
            cursor.execute("SELECT * FROM notes WHERE server_id = ?", (server_id,))
            row = cursor.fetchone()
        return self._row_to_note(row) if row else None

    def list_notes(self) -> List[Note]:
        """Get all notes, tombstones included, newest first."""
        with self._transaction() as cursor:
            cursor.execute("SELECT * FROM notes ORDER BY created_at DESC, local_id DESC")
            rows = cursor.fetchall()
        return [self._row_to_note(row) for row in rows]

    def put_note(self, note: Note) -> None:
        """Insert or replace a note, keyed by local_id."""
        with self._transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO notes (local_id, server_id, title, tags, created_at,
                                   updated_at, pending_delete, pending_edit)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(local_id) DO UPDATE SET
                    server_id = excluded.server_id,
                    title = excluded.title,
                    tags = excluded.tags,
                    updated_at = excluded.updated_at,
                    pending_delete = excluded.pending_delete,
                    pending_edit = excluded.pending_edit
                """,
                (
                    note.local_id,
                    note.server_id,
                    note.title,
                    json.dumps(list(note.tags)),
                    to_iso(note.created_at),
                    to_iso(note.updated_at),
                    note.pending_delete.value,
                    note.pending_edit.value,
                ),
            )
        logger.debug(f"Stored note {note.local_id} ({note.state.value})")

    def delete_note(self, local_id: str) -> bool:
        """Physically remove a note. Returns True if a row was removed."""
        with self._transaction() as cursor:
            cursor.execute("DELETE FROM notes WHERE local_id = ?", (local_id,))
            removed = cursor.rowcount > 0
        if removed:
            logger.debug(f"Removed note {local_id}")
        return removed

    def count_by_state(self) -> Dict[str, int]:
        """Count notes per lifecycle state."""
        counts = {state.value: 0 for state in NoteState if state is not NoteState.DESTROYED}
        for note in self.list_notes():
            counts[note.state.value] += 1
        return counts

    # ===== Conflicts =====

    def create_conflict(self, record: Dict[str, Any]) -> None:
        """Insert a conflict record (see conflicts.ConflictManager)."""
        with self._transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO conflicts (id, conflict_type, local_id, server_id,
                    local_title, local_tags, local_updated_at, remote_title,
                    remote_tags, remote_updated_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record["id"],
                    record["conflict_type"],
                    record["local_id"],
                    record.get("server_id"),
                    record["local_title"],
                    json.dumps(list(record["local_tags"])),
                    record.get("local_updated_at"),
                    record.get("remote_title"),
                    json.dumps(list(record["remote_tags"]))
                    if record.get("remote_tags") is not None else None,
                    record.get("remote_updated_at"),
                    record["created_at"],
                ),
            )

    @staticmethod
    def _conflict_row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
        result = dict(row)
        result["local_tags"] = json.loads(result["local_tags"])
        if result["remote_tags"] is not None:
            result["remote_tags"] = json.loads(result["remote_tags"])
        return result

    def get_conflicts(self, include_resolved: bool = False) -> List[Dict[str, Any]]:
        query = "SELECT * FROM conflicts"
        if not include_resolved:
            query += " WHERE resolved_at IS NULL"
        query += " ORDER BY created_at"
        with self._transaction() as cursor:
            cursor.execute(query)
            rows = cursor.fetchall()
        return [self._conflict_row_to_dict(row) for row in rows]

    def get_conflict(self, conflict_id: str) -> Optional[Dict[str, Any]]:
        with self._transaction() as cursor:
            cursor.execute("SELECT * FROM conflicts WHERE id = ?", (conflict_id,))
            row = cursor.fetchone()
        return self._conflict_row_to_dict(row) if row else None

    def resolve_conflict(self, conflict_id: str, resolution: str, resolved_at: str) -> bool:
        with self._transaction() as cursor:
            cursor.execute(
                """
                UPDATE conflicts SET resolution = ?, resolved_at = ?
                WHERE id = ? AND resolved_at IS NULL
                """,
                (resolution, resolved_at, conflict_id),
            )
            return cursor.rowcount > 0

    def get_unresolved_conflict_counts(self) -> Dict[str, int]:
        with self._transaction() as cursor:
            cursor.execute(
                """
                SELECT conflict_type, COUNT(*) AS n FROM conflicts
                WHERE resolved_at IS NULL GROUP BY conflict_type
                """
            )
            rows = cursor.fetchall()
        return {row["conflict_type"]: row["n"] for row in rows}
