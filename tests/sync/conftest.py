"""Pytest fixtures for sync integration tests.

This module provides fixtures for:
- Running the reference notes server in a background thread on a free port
- Creating isolated client nodes (config, Local Store, engine) that talk to it
"""

from __future__ import annotations

import socket
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Generator

import pytest
import requests
from werkzeug.serving import BaseWSGIServer, make_server

from notesync.core.config import Config
from notesync.core.connectivity import StaticConnectivity
from notesync.core.database import Database
from notesync.core.notes import NoteCommands
from notesync.core.remote import HttpRemoteStore
from notesync.core.sync import SyncEngine
from notesync.web import create_app


def find_free_port() -> int:
    """Find an available port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@dataclass
class LiveServer:
    """The reference server running in this process."""

    server: BaseWSGIServer
    thread: threading.Thread
    port: int

    @property
    def url(self) -> str:
        return f"http://127.0.0.1:{self.port}"

    def is_running(self) -> bool:
        try:
            return requests.get(f"{self.url}/api/status", timeout=1).status_code == 200
        except requests.exceptions.RequestException:
            return False

    def wait_for_server(self, timeout: float = 10.0) -> bool:
        start = time.time()
        while time.time() - start < timeout:
            if self.is_running():
                return True
            time.sleep(0.05)
        return False


@dataclass
class SyncNode:
    """A client device pointed at the live server."""

    name: str
    config: Config
    db: Database
    remote: HttpRemoteStore
    connectivity: StaticConnectivity
    engine: SyncEngine
    commands: NoteCommands


@pytest.fixture
def live_server(tmp_path: Path) -> Generator[LiveServer, None, None]:
    """Start the Flask reference server on a free port."""
    app = create_app(db_path=tmp_path / "server.db")
    port = find_free_port()
    server = make_server("127.0.0.1", port, app, threaded=True)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()

    live = LiveServer(server=server, thread=thread, port=port)
    if not live.wait_for_server():
        server.shutdown()
        pytest.fail("Reference server did not start")
    yield live

    server.shutdown()
    thread.join(5)
    app.config["NOTE_STORE"].close()


def _make_node(name: str, tmp_path: Path, server_url: str) -> SyncNode:
    config = Config(config_dir=tmp_path / name)
    config.set_server_url(server_url)
    db = Database(config.get_database_file())
    remote = HttpRemoteStore(config.get_server_url(), timeout=5)
    connectivity = StaticConnectivity(online=True)
    engine = SyncEngine.from_config(db, config, remote, connectivity)
    return SyncNode(name, config, db, remote, connectivity, engine, NoteCommands(db, engine))


@pytest.fixture
def node_a(tmp_path: Path, live_server: LiveServer) -> Generator[SyncNode, None, None]:
    node = _make_node("node_a", tmp_path, live_server.url)
    yield node
    node.db.close()


@pytest.fixture
def node_b(tmp_path: Path, live_server: LiveServer) -> Generator[SyncNode, None, None]:
    node = _make_node("node_b", tmp_path, live_server.url)
    yield node
    node.db.close()
