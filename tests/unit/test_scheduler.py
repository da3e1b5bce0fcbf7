"""Unit tests for the background auto refresher."""

from __future__ import annotations

import threading
from typing import List

import pytest

from notesync.core.connectivity import StaticConnectivity
from notesync.core.scheduler import AutoRefresher
from notesync.core.sync import RefreshResult, SyncEngine


@pytest.mark.unit
class TestTick:
    """Scheduling decisions, driven step by step."""

    def test_offline_does_nothing(
        self, engine: SyncEngine, connectivity: StaticConnectivity
    ) -> None:
        connectivity.set_online(False)
        refresher = AutoRefresher(engine, refresh_interval=0)
        assert refresher.tick() is None

    def test_refreshes_when_connectivity_restored(
        self, engine: SyncEngine, connectivity: StaticConnectivity
    ) -> None:
        refresher = AutoRefresher(engine, refresh_interval=3600)
        connectivity.set_online(False)
        refresher.tick()

        connectivity.set_online(True)
        result = refresher.tick()
        assert result is not None
        assert result.success

    def test_waits_for_interval(self, engine: SyncEngine) -> None:
        refresher = AutoRefresher(engine, refresh_interval=3600)
        assert refresher.tick() is not None  # first tick counts as a restore
        assert refresher.tick() is None

    def test_trigger_forces_refresh(self, engine: SyncEngine) -> None:
        refresher = AutoRefresher(engine, refresh_interval=3600)
        refresher.tick()
        refresher.trigger()
        assert refresher.tick() is not None
        assert refresher.tick() is None

    def test_callback_receives_result(self, engine: SyncEngine) -> None:
        seen: List[RefreshResult] = []
        refresher = AutoRefresher(engine, refresh_interval=3600, on_refresh=seen.append)
        refresher.tick()
        assert len(seen) == 1


@pytest.mark.unit
class TestBackgroundThread:
    def test_start_and_stop(self, engine: SyncEngine) -> None:
        done = threading.Event()
        refresher = AutoRefresher(
            engine, refresh_interval=3600, probe_interval=0.01,
            on_refresh=lambda result: done.set(),
        )
        refresher.start()
        try:
            assert refresher.is_running
            assert done.wait(5)
        finally:
            refresher.stop()
        assert not refresher.is_running

    def test_loop_survives_errors(self, engine: SyncEngine) -> None:
        calls = []
        recovered = threading.Event()

        def flaky(result: RefreshResult) -> None:
            calls.append(result)
            if len(calls) == 1:
                raise RuntimeError("callback failed")
            recovered.set()

        refresher = AutoRefresher(engine, refresh_interval=0, probe_interval=0.01, on_refresh=flaky)
        refresher.start()
        try:
            assert recovered.wait(5)
        finally:
            refresher.stop()
