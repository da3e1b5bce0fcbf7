"""Pytest fixtures for notesync tests.

This module provides fixtures for test configuration, the Local Store, an
in-memory Remote Store with failure injection, and a wired sync engine.
"""

from __future__ import annotations

from pathlib import Path
from typing import Generator

import pytest

from notesync.core.config import Config
from notesync.core.connectivity import StaticConnectivity
from notesync.core.database import Database
from notesync.core.notes import NoteCommands
from notesync.core.sync import SyncEngine
from tests.helpers import FakeRemoteStore


@pytest.fixture
def test_config_dir(tmp_path: Path) -> Path:
    """Create temporary config directory for tests.

    Args:
        tmp_path: pytest temporary directory fixture

    Returns:
        Path to temporary config directory.
    """
    config_dir = tmp_path / "notesync_test"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


@pytest.fixture
def test_config(test_config_dir: Path) -> Config:
    """Create test configuration."""
    return Config(config_dir=test_config_dir)


@pytest.fixture
def test_db_path(test_config_dir: Path) -> Path:
    return test_config_dir / "test_notes.db"


@pytest.fixture
def test_db(test_db_path: Path) -> Generator[Database, None, None]:
    """Create empty Local Store.

    Yields:
        Empty Database instance.
    """
    db = Database(test_db_path)
    yield db
    db.close()


@pytest.fixture
def fake_remote() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture
def connectivity() -> StaticConnectivity:
    """Connectivity probe, online by default; tests flip it with set_online()."""
    return StaticConnectivity(online=True)


@pytest.fixture
def engine(
    test_db: Database, fake_remote: FakeRemoteStore, connectivity: StaticConnectivity
) -> SyncEngine:
    return SyncEngine(test_db, fake_remote, connectivity)


@pytest.fixture
def commands(test_db: Database, engine: SyncEngine) -> NoteCommands:
    return NoteCommands(test_db, engine)
