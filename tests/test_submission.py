"""Tests for send-or-cache submission and cache draining."""

import asyncio
import os
import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from conftest import authenticate
from fleet_uplink.cache.retry_cache import RetryCache
from fleet_uplink.coordinator.submission import SubmissionCoordinator
from fleet_uplink.events.models import FleetSnapshotRecord
from fleet_uplink.events.wire import decompress_payload
from fleet_uplink.utils.listeners import Listeners

T0 = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class StubManager:
    """Just enough of ConnectionManager for the coordinator."""

    def __init__(self, authenticated=True):
        self.is_authenticated = authenticated
        self.on_authenticated = Listeners("authenticated")
        self.snapshots = []
        self.loot = []
        self.fail_snapshot = lambda payload: False
        self.gate = None

    async def send_snapshot(self, payload):
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_snapshot(payload):
            raise RuntimeError("boom")
        self.snapshots.append(payload)
        return True

    async def send_loot(self, record):
        self.loot.append(record)
        return True

    def status(self):
        return {"state": "authenticated"}


@pytest.fixture
def cache(cache_dir):
    c = RetryCache(os.path.join(cache_dir, "pending_data.json"))
    yield c
    c.close()


def make_coordinator(manager, cache, **kwargs):
    kwargs.setdefault("snapshot_delay", 0)
    kwargs.setdefault("loot_delay", 0)
    return SubmissionCoordinator(manager, cache, **kwargs)


class TestSubmit:

    @pytest.mark.asyncio
    async def test_snapshot_cached_exactly_once_when_offline(self, manager, cache):
        coordinator = make_coordinator(manager, cache)
        assert await coordinator.submit_snapshot({"subs": []}) is False
        assert cache.pending_snapshot_count == 1

    @pytest.mark.asyncio
    async def test_snapshot_record_cached_with_capture_time(self, manager, cache):
        coordinator = make_coordinator(manager, cache)
        record = FleetSnapshotRecord(captured_at=T0, payload={"subs": [1]})
        assert await coordinator.submit_snapshot(record) is False
        [entry] = cache.list_snapshots()
        assert entry.id == record.id
        assert entry.captured_at == T0
        assert entry.data == {"subs": [1]}

    @pytest.mark.asyncio
    async def test_duplicate_loot_cached_once(self, manager, cache, make_loot):
        coordinator = make_coordinator(manager, cache)
        await coordinator.submit_loot(make_loot(captured_at=T0))
        await coordinator.submit_loot(make_loot(captured_at=T0 + timedelta(seconds=5)))
        assert cache.pending_loot_count == 1

    @pytest.mark.asyncio
    async def test_live_send_bypasses_cache(self, manager, transports, cache, make_loot):
        coordinator = make_coordinator(manager, cache)
        await authenticate(manager, transports)

        assert await coordinator.submit_snapshot({"subs": [1]}) is True
        assert await coordinator.submit_loot(make_loot()) is True
        assert not cache.has_pending
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_send_now_without_source(self, manager, cache):
        coordinator = make_coordinator(manager, cache)
        assert await coordinator.send_now() is False
        assert not cache.has_pending

    @pytest.mark.asyncio
    async def test_send_now_caches_when_offline(self, manager, cache):
        coordinator = make_coordinator(manager, cache, snapshot_source=lambda: {"subs": [2]})
        assert await coordinator.send_now() is False
        assert cache.list_snapshots()[0].data == {"subs": [2]}


class TestFlushOnAuthentication:

    @pytest.mark.asyncio
    async def test_flush_sends_snapshots_then_loot(self, manager, transports, cache, make_loot):
        for i in range(3):
            cache.add_snapshot({"n": i}, captured_at=T0 + timedelta(minutes=i))
        cache.add_loot(make_loot(submarine="Whale"))
        cache.add_loot(make_loot(submarine="Shark"))

        coordinator = make_coordinator(manager, cache)
        coordinator.bind()
        await authenticate(manager, transports)

        sent = [event for event, _ in transports.last.sent if event != "authenticate"]
        assert sent == ["fleet_data"] * 3 + ["voyage_loot"] * 2
        payloads = [decompress_payload(d["data"]) for d in transports.last.events("fleet_data")]
        assert payloads == [[{"n": 0}], [{"n": 1}], [{"n": 2}]]
        assert not cache.has_pending
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_fresh_snapshot_sent_before_backlog(self, manager, transports, cache):
        cache.add_snapshot({"n": "old"})

        async def source():
            return {"n": "fresh"}

        coordinator = make_coordinator(manager, cache, snapshot_source=source)
        coordinator.bind()
        await authenticate(manager, transports)

        payloads = [decompress_payload(d["data"]) for d in transports.last.events("fleet_data")]
        assert payloads == [[{"n": "fresh"}], [{"n": "old"}]]
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_unbind_stops_flushing(self, manager, transports, cache):
        cache.add_snapshot({"n": 1})
        coordinator = make_coordinator(manager, cache)
        coordinator.bind()
        coordinator.unbind()
        await authenticate(manager, transports)
        assert cache.pending_snapshot_count == 1
        await manager.disconnect()


class TestFlushAll:

    @pytest.mark.asyncio
    async def test_failing_entry_stays_cached(self, cache, make_loot):
        manager = StubManager()
        manager.fail_snapshot = lambda payload: payload == {"n": 1}
        for i in range(3):
            cache.add_snapshot({"n": i})
        cache.add_loot(make_loot())

        coordinator = make_coordinator(manager, cache)
        assert await coordinator.flush_all() == (2, 1)

        assert manager.snapshots == [{"n": 0}, {"n": 2}]
        assert [e.data for e in cache.list_snapshots()] == [{"n": 1}]
        assert cache.pending_loot_count == 0

    @pytest.mark.asyncio
    async def test_not_authenticated_is_noop(self, cache):
        manager = StubManager(authenticated=False)
        cache.add_snapshot({"n": 1})
        coordinator = make_coordinator(manager, cache)
        assert await coordinator.flush_all() == (0, 0)
        assert manager.snapshots == []
        assert cache.pending_snapshot_count == 1

    @pytest.mark.asyncio
    async def test_empty_cache_is_noop(self, cache):
        coordinator = make_coordinator(StubManager(), cache)
        assert await coordinator.flush_all() == (0, 0)

    @pytest.mark.asyncio
    async def test_overlapping_flushes_collapse(self, cache):
        manager = StubManager()
        manager.gate = asyncio.Event()
        cache.add_snapshot({"n": 1})
        coordinator = make_coordinator(manager, cache)

        first = asyncio.create_task(coordinator.flush_all())
        await asyncio.sleep(0)
        assert coordinator.is_flushing
        assert await coordinator.flush_all() == (0, 0)

        manager.gate.set()
        assert await first == (1, 0)
        assert manager.snapshots == [{"n": 1}]

    @pytest.mark.asyncio
    async def test_stops_when_authentication_lost(self, cache, make_loot):
        manager = StubManager()
        for i in range(3):
            cache.add_snapshot({"n": i})
        cache.add_loot(make_loot())

        async def send_then_drop(payload):
            manager.snapshots.append(payload)
            manager.is_authenticated = False
            return True

        manager.send_snapshot = send_then_drop
        coordinator = make_coordinator(manager, cache)

        assert await coordinator.flush_all() == (1, 0)
        assert cache.pending_snapshot_count == 2
        assert cache.pending_loot_count == 1

    @pytest.mark.asyncio
    async def test_status_includes_backlog(self, cache):
        cache.add_snapshot({})
        coordinator = make_coordinator(StubManager(), cache)
        status = coordinator.status()
        assert status["state"] == "authenticated"
        assert status["pending_snapshots"] == 1
        assert status["pending_loot"] == 0
        assert status["flushing"] is False

    @pytest.mark.asyncio
    async def test_drain_paces_between_entries_only(self, cache, make_loot):
        for i in range(3):
            cache.add_snapshot({"n": i})
        cache.add_loot(make_loot(submarine="Whale"))
        cache.add_loot(make_loot(submarine="Shark"))
        coordinator = SubmissionCoordinator(StubManager(), cache)

        with patch("fleet_uplink.coordinator.submission.asyncio.sleep", new=AsyncMock()) as sleep:
            assert await coordinator.flush_all() == (3, 2)

        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 0.5, 0.25]


class TestCacheIO:

    @pytest.mark.asyncio
    async def test_cache_writes_run_off_the_loop_thread(self, manager, cache):
        loop_thread = threading.get_ident()
        writer_threads = []
        write = cache._write_atomic

        def recording_write(text):
            writer_threads.append(threading.get_ident())
            write(text)

        with patch.object(cache, "_write_atomic", side_effect=recording_write):
            assert await make_coordinator(manager, cache).submit_snapshot({"n": 1}) is False
            assert await make_coordinator(StubManager(), cache).flush_all() == (1, 0)

        assert len(writer_threads) == 2
        assert loop_thread not in writer_threads
