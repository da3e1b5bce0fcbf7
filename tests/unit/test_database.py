"""Unit tests for the SQLite Local Store."""

from __future__ import annotations

import threading
from datetime import timedelta
from pathlib import Path

import pytest

from notesync.core.database import Database, LocalStoreError
from notesync.core.models import NoteState, PendingState
from notesync.core.notes import create_note
from notesync.core.sync import apply_edit, mark_pending_delete
from notesync.core.timestamp_utils import utc_now
from tests.helpers import synced_note


@pytest.mark.unit
class TestNotePersistence:
    """Test put/get/list/delete."""

    def test_put_and_get_round_trip(self, test_db: Database) -> None:
        note = create_note("Buy milk", ["errand", "home"])
        test_db.put_note(note)
        assert test_db.get_note(note.local_id) == note

    def test_get_missing_returns_none(self, test_db: Database) -> None:
        assert test_db.get_note("0" * 32) is None
        assert test_db.get_note_by_server_id("nope") is None

    def test_put_is_upsert(self, test_db: Database) -> None:
        note = synced_note("a" * 32, "s1", title="Before")
        test_db.put_note(note)
        edited = apply_edit(note, "After", ("x",), utc_now())
        test_db.put_note(edited)

        stored = test_db.get_note(note.local_id)
        assert stored.title == "After"
        assert stored.pending_edit is PendingState.PENDING
        assert len(test_db.list_notes()) == 1

    def test_get_by_server_id(self, test_db: Database) -> None:
        note = synced_note("b" * 32, "server-7")
        test_db.put_note(note)
        assert test_db.get_note_by_server_id("server-7").local_id == note.local_id

    def test_server_id_is_unique(self, test_db: Database) -> None:
        test_db.put_note(synced_note("a" * 32, "s1"))
        with pytest.raises(LocalStoreError):
            test_db.put_note(synced_note("b" * 32, "s1"))

    def test_list_newest_first(self, test_db: Database) -> None:
        base = utc_now()
        for i in range(3):
            note = synced_note(f"{i:032x}", f"s{i}", title=f"n{i}",
                               updated_at=base + timedelta(minutes=i))
            test_db.put_note(note)
        titles = [n.title for n in test_db.list_notes()]
        assert titles == ["n2", "n1", "n0"]

    def test_delete_note(self, test_db: Database) -> None:
        note = create_note("Gone soon")
        test_db.put_note(note)
        assert test_db.delete_note(note.local_id) is True
        assert test_db.delete_note(note.local_id) is False
        assert test_db.get_note(note.local_id) is None

    def test_persists_across_connections(self, test_db_path: Path) -> None:
        db = Database(test_db_path)
        note = create_note("Durable")
        db.put_note(note)
        db.close()

        reopened = Database(test_db_path)
        try:
            assert reopened.get_note(note.local_id) == note
        finally:
            reopened.close()

    def test_in_memory_database(self) -> None:
        db = Database(":memory:")
        note = create_note("Ephemeral")
        db.put_note(note)
        assert db.get_note(note.local_id) == note
        db.close()


@pytest.mark.unit
class TestCountByState:
    def test_counts(self, test_db: Database) -> None:
        test_db.put_note(create_note("local"))
        synced = synced_note("a" * 32, "s1")
        test_db.put_note(synced)
        test_db.put_note(apply_edit(synced_note("b" * 32, "s2"), "e", (), utc_now()))
        test_db.put_note(mark_pending_delete(synced_note("c" * 32, "s3"), utc_now()))

        counts = test_db.count_by_state()
        assert counts == {
            NoteState.LOCAL_ONLY.value: 1,
            NoteState.SYNCED.value: 1,
            NoteState.PENDING_EDIT.value: 1,
            NoteState.PENDING_DELETE.value: 1,
        }


@pytest.mark.unit
class TestNoteLock:
    def test_lock_is_reentrant(self, test_db: Database) -> None:
        with test_db.note_lock("x"):
            with test_db.note_lock("x"):
                pass

    def test_released_locks_are_dropped(self, test_db: Database) -> None:
        for i in range(50):
            note = create_note(f"Note {i}")
            with test_db.note_lock(note.local_id):
                test_db.put_note(note)
            with test_db.note_lock(note.local_id):
                test_db.delete_note(note.local_id)
        assert len(test_db._note_locks) == 0

    def test_lock_excludes_other_threads(self, test_db: Database) -> None:
        order = []
        entered = threading.Event()

        def worker() -> None:
            entered.set()
            with test_db.note_lock("x"):
                order.append("worker")

        with test_db.note_lock("x"):
            thread = threading.Thread(target=worker)
            thread.start()
            entered.wait(1)
            thread.join(0.2)
            order.append("main")
        thread.join(2)

        assert order == ["main", "worker"]


@pytest.mark.unit
class TestConflictRecords:
    def _record(self, conflict_id: str) -> dict:
        return {
            "id": conflict_id,
            "conflict_type": "note_content",
            "local_id": "a" * 32,
            "server_id": "s1",
            "local_title": "Local",
            "local_tags": ["a"],
            "local_updated_at": None,
            "remote_title": "Remote",
            "remote_tags": ["b"],
            "remote_updated_at": None,
            "created_at": utc_now().isoformat(),
        }

    def test_create_and_resolve(self, test_db: Database) -> None:
        test_db.create_conflict(self._record("c1"))
        assert test_db.get_unresolved_conflict_counts() == {"note_content": 1}

        row = test_db.get_conflict("c1")
        assert row["local_tags"] == ["a"]
        assert row["remote_tags"] == ["b"]

        assert test_db.resolve_conflict("c1", "keep_local", utc_now().isoformat())
        assert not test_db.resolve_conflict("c1", "keep_local", utc_now().isoformat())
        assert test_db.get_conflicts() == []
        assert len(test_db.get_conflicts(include_resolved=True)) == 1
