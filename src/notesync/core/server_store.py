"""Server-side note storage for the notesync reference server.

The authoritative replica served by web.py. Uses SQLite so the reference
server survives restarts; ':memory:' is supported for tests.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from uuid6 import uuid7

from .timestamp_utils import to_iso, utc_now
from .validation import ValidationError, validate_tag, validate_title

logger = logging.getLogger(__name__)

__all__ = ["ServerNoteStore", "validate_server_tags"]


SCHEMA = """
CREATE TABLE IF NOT EXISTS server_notes (
    id TEXT PRIMARY KEY,
    local_id TEXT,
    title TEXT NOT NULL,
    tags TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_server_notes_created_at ON server_notes(created_at);
"""


def validate_server_tags(tags: Any) -> List[str]:
    """Trim and lowercase tags; reject empty or duplicate entries."""
    if tags is None:
        return []
    if not isinstance(tags, (list, tuple)):
        raise ValidationError("tags", "must be a list of strings")
    cleaned = [validate_tag(tag) for tag in tags]
    if any(not tag for tag in cleaned):
        raise ValidationError("tags", "tags cannot be empty")
    if len(set(cleaned)) != len(cleaned):
        raise ValidationError("tags", "tags must be unique")
    return cleaned


class ServerNoteStore:
    """SQLite-backed server note collection."""

    def __init__(self, db_path: Union[Path, str]) -> None:
        self.db_path = str(db_path)
        self._lock = threading.Lock()
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.executescript(SCHEMA)
        self.conn.commit()
        logger.info(f"Opened server store at {self.db_path}")

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    @staticmethod
    def _row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "_id": row["id"],
            "localId": row["local_id"],
            "title": row["title"],
            "tags": json.loads(row["tags"]),
            "createdAt": row["created_at"],
            "updatedAt": row["updated_at"],
        }

    def list_notes(self) -> List[Dict[str, Any]]:
        """All notes, newest first by createdAt."""
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM server_notes ORDER BY created_at DESC, id DESC"
            ).fetchall()
        return [self._row_to_dict(row) for row in rows]

    def get_note(self, note_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM server_notes WHERE id = ?", (note_id,)
            ).fetchone()
        return self._row_to_dict(row) if row else None

    def create_note(
        self,
        title: str,
        tags: Sequence[str],
        local_id: Optional[str] = None,
        created_at: Optional[str] = None,
    ) -> str:
        """Insert a note and return its new ID. updatedAt is stamped now."""
        title = validate_title(title)
        tags = validate_server_tags(tags)
        note_id = uuid7().hex
        now = to_iso(utc_now())
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO server_notes (id, local_id, title, tags, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (note_id, local_id, title, json.dumps(tags), created_at or now, now),
            )
            self.conn.commit()
        return note_id

    def update_note(self, note_id: str, title: str, tags: Optional[Sequence[str]]) -> bool:
        """Replace title (and tags if given). Returns False for unknown IDs."""
        title = validate_title(title)
        now = to_iso(utc_now())
        with self._lock:
            if tags is None:
                cursor = self.conn.execute(
                    "UPDATE server_notes SET title = ?, updated_at = ? WHERE id = ?",
                    (title, now, note_id),
                )
            else:
                cleaned = validate_server_tags(tags)
                cursor = self.conn.execute(
                    "UPDATE server_notes SET title = ?, tags = ?, updated_at = ? WHERE id = ?",
                    (title, json.dumps(cleaned), now, note_id),
                )
            self.conn.commit()
            return cursor.rowcount > 0

    def delete_note(self, note_id: str) -> bool:
        with self._lock:
            cursor = self.conn.execute("DELETE FROM server_notes WHERE id = ?", (note_id,))
            self.conn.commit()
            return cursor.rowcount > 0
