"""Connectivity probes for notesync.

The sync engine and note commands never read a global online flag; they ask
an injected ConnectivityProbe, so tests can force "offline" deterministically.
"""

from __future__ import annotations

import logging
import threading
from typing import Protocol

from .remote import RemoteStore

logger = logging.getLogger(__name__)

__all__ = ["ConnectivityProbe", "StaticConnectivity", "RemoteConnectivityProbe"]


class ConnectivityProbe(Protocol):
    """Capability answering "may we talk to the Remote Store right now?"."""

    def is_online(self) -> bool:
        ...


class StaticConnectivity:
    """A probe whose answer is set explicitly (tests, --offline flag)."""

    def __init__(self, online: bool = True) -> None:
        self._online = online
        self._lock = threading.Lock()

    def is_online(self) -> bool:
        with self._lock:
            return self._online

    def set_online(self, online: bool) -> None:
        with self._lock:
            self._online = online
        logger.info(f"Connectivity set to {'online' if online else 'offline'}")


class RemoteConnectivityProbe:
    """Reports online when the Remote Store answers its status check."""

    def __init__(self, remote: RemoteStore) -> None:
        self.remote = remote
        self._last_state = None

    def is_online(self) -> bool:
        online = self.remote.ping()
        if online != self._last_state:
            logger.info(f"Remote store is {'reachable' if online else 'unreachable'}")
            self._last_state = online
        return online
