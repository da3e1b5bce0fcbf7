"""Background refresh scheduling for notesync.

AutoRefresher runs a daemon thread that watches the connectivity probe and
triggers SyncEngine.refresh():
- immediately when connectivity is restored (offline -> online)
- every refresh_interval seconds while online
- whenever trigger() is called

Overlapping requests are coalesced by the engine itself.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from .sync import RefreshResult, SyncEngine

logger = logging.getLogger(__name__)

__all__ = ["AutoRefresher"]


class AutoRefresher:
    """Periodic and connectivity-driven refresh loop."""

    def __init__(
        self,
        engine: SyncEngine,
        refresh_interval: float = 30.0,
        probe_interval: float = 5.0,
        on_refresh: Optional[Callable[[RefreshResult], None]] = None,
    ) -> None:
        """Initialize the refresher.

        Args:
            engine: Sync engine to drive
            refresh_interval: Seconds between refreshes while online
            probe_interval: Seconds between connectivity checks
            on_refresh: Called with each completed RefreshResult
        """
        self.engine = engine
        self.refresh_interval = refresh_interval
        self.probe_interval = probe_interval
        self.on_refresh = on_refresh
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._was_online = False
        self._last_refresh = 0.0

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="notesync-refresher", daemon=True
        )
        self._thread.start()
        logger.info(
            f"Auto refresh started (interval={self.refresh_interval}s, "
            f"probe={self.probe_interval}s)"
        )

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Auto refresh stopped")

    def trigger(self) -> None:
        """Request a refresh at the next opportunity."""
        self._wake.set()

    def tick(self) -> Optional[RefreshResult]:
        """Run one scheduling step; returns the refresh result if one ran."""
        triggered = self._wake.is_set()
        self._wake.clear()

        online = self.engine.is_online()
        restored = online and not self._was_online
        self._was_online = online
        if not online:
            return None

        due = time.monotonic() - self._last_refresh >= self.refresh_interval
        if not (restored or due or triggered):
            return None

        if restored:
            logger.info("Connectivity restored; refreshing")
        result = self.engine.refresh()
        if not result.skipped:
            self._last_refresh = time.monotonic()
        if self.on_refresh is not None:
            self.on_refresh(result)
        return result

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.tick()
            except Exception as e:
                # Keep the loop alive; the failed pass is retried on the next tick
                logger.error(f"Background refresh failed: {e}")
            self._wake.wait(self.probe_interval)
