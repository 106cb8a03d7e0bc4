"""
Fleet Uplink -- Submission Coordinator.

Glue policy between producers, the connection manager and the retry cache:

    submit  -> try a live send  -> on failure, cache the payload
    authenticated -> send a fresh snapshot, then drain the cache
                     (snapshots first, then loot, oldest insert first,
                     paced so the server is not burst)

The live path comes first because producers call at irregular,
event-driven moments; the cache is the exception path.  Cache calls that
touch the disk run through ``asyncio.to_thread`` so an fsync never stalls
the loop.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from fleet_uplink.cache.retry_cache import RetryCache
from fleet_uplink.connection.manager import ConnectionManager
from fleet_uplink.events.models import FleetSnapshotRecord, LootRecord

logger = logging.getLogger(__name__)

SnapshotSource = Callable[[], Union[Optional[dict[str, Any]], Awaitable[Optional[dict[str, Any]]]]]


class SubmissionCoordinator:
    """Send-or-cache for producers; cache drain on authentication.

    Args:
        manager: The connection manager used for live sends.
        cache: The retry cache used when a live send fails.
        snapshot_source: Optional callable (sync or async) returning the
            current fleet snapshot, or ``None`` when nothing is available.
            Used by :meth:`send_now` and on authentication.
        snapshot_delay: Pause between cached snapshot sends during a flush.
        loot_delay: Pause between cached loot sends during a flush.
        metrics: Optional metrics collector.
    """

    def __init__(
        self,
        manager: ConnectionManager,
        cache: RetryCache,
        snapshot_source: Optional[SnapshotSource] = None,
        snapshot_delay: float = 0.5,
        loot_delay: float = 0.25,
        metrics: Any = None,
    ) -> None:
        self._manager = manager
        self._cache = cache
        self._snapshot_source = snapshot_source
        self._snapshot_delay = snapshot_delay
        self._loot_delay = loot_delay
        self._metrics = metrics

        self._flush_lock = asyncio.Lock()
        self._bound = False

    @property
    def is_flushing(self) -> bool:
        return self._flush_lock.locked()

    def bind(self) -> None:
        """Subscribe to the manager's ``on_authenticated`` notification."""
        if self._bound:
            return
        self._manager.on_authenticated.add(self._on_authenticated)
        self._bound = True

    def unbind(self) -> None:
        self._manager.on_authenticated.remove(self._on_authenticated)
        self._bound = False

    # -- producers ------------------------------------------------------------

    async def submit_snapshot(self, payload: Union[dict[str, Any], FleetSnapshotRecord]) -> bool:
        """Send *payload* now, or cache it.  Returns whether it was delivered."""
        data = payload.payload if isinstance(payload, FleetSnapshotRecord) else payload
        if await self._manager.send_snapshot(data):
            return True
        await asyncio.to_thread(self._cache.add_snapshot, payload)
        return False

    async def submit_loot(self, record: LootRecord) -> bool:
        """Send *record* now, or cache it (duplicates are dropped by the cache)."""
        if await self._manager.send_loot(record):
            return True
        await asyncio.to_thread(self._cache.add_loot, record)
        return False

    async def send_now(self) -> bool:
        """Capture a snapshot from the source and submit it (manual trigger)."""
        payload = await self._capture_snapshot()
        if payload is None:
            logger.warning("No valid fleet data to send")
            return False
        return await self.submit_snapshot(payload)

    # -- cache drain ----------------------------------------------------------

    async def flush_all(self) -> tuple[int, int]:
        """Replay cached payloads through the live connection.

        One failing entry never aborts the batch; it stays cached for the
        next flush.  Concurrent calls are collapsed: a flush that is
        already running makes a second call return immediately.

        Returns:
            ``(snapshots_sent, loot_sent)``.
        """
        if not self._cache.has_pending:
            return (0, 0)
        if not self._manager.is_authenticated:
            logger.debug("Cannot flush cache - not authenticated")
            return (0, 0)
        if self._flush_lock.locked():
            logger.debug("Cache flush already in progress, skipping")
            return (0, 0)

        async with self._flush_lock:
            logger.info(
                "Flushing cached data (%d fleet, %d loot)",
                self._cache.pending_snapshot_count,
                self._cache.pending_loot_count,
            )

            snapshots_sent = await self._drain(
                "snapshot",
                await asyncio.to_thread(self._cache.list_snapshots),
                lambda entry: self._manager.send_snapshot(entry.data),
                self._cache.remove_snapshot,
                self._snapshot_delay,
            )
            loot_sent = await self._drain(
                "loot",
                await asyncio.to_thread(self._cache.list_loot),
                lambda entry: self._manager.send_loot(entry.data),
                self._cache.remove_loot,
                self._loot_delay,
            )

            logger.info(
                "Flush complete (%d fleet, %d loot remaining)",
                self._cache.pending_snapshot_count,
                self._cache.pending_loot_count,
            )
            return (snapshots_sent, loot_sent)

    async def _drain(
        self,
        kind: str,
        entries: list[Any],
        send: Callable[[Any], Awaitable[bool]],
        remove: Callable[[str], bool],
        delay: float,
    ) -> int:
        sent = 0
        for index, entry in enumerate(entries):
            if not self._manager.is_authenticated:
                logger.warning(
                    "Connection lost during flush; %d cached %s entries left for later",
                    len(entries) - index,
                    kind,
                )
                break

            try:
                delivered = await send(entry)
            except Exception as exc:
                logger.error("Error sending cached %s %s: %s", kind, entry.id, exc)
                self._record_flush(kind, "error")
            else:
                if delivered:
                    await asyncio.to_thread(remove, entry.id)
                    sent += 1
                    self._record_flush(kind, "sent")
                else:
                    logger.warning("Failed to send cached %s (will retry later)", kind)
                    self._record_flush(kind, "failed")

            if index < len(entries) - 1:
                await asyncio.sleep(delay)
        return sent

    # -- authentication hook --------------------------------------------------

    async def _on_authenticated(self) -> None:
        # Current fleet state first, then whatever piled up while offline
        if self._snapshot_source is not None:
            try:
                await self.send_now()
            except Exception as exc:
                logger.error("Failed to send fleet data on authentication: %s", exc)
        await self.flush_all()

    async def _capture_snapshot(self) -> Optional[dict[str, Any]]:
        if self._snapshot_source is None:
            return None
        result = self._snapshot_source()
        if inspect.isawaitable(result):
            result = await result
        return result

    # -- observability --------------------------------------------------------

    def status(self) -> dict[str, Any]:
        """Connection status plus retry-cache backlog."""
        status = self._manager.status()
        status.update(
            {
                "pending_snapshots": self._cache.pending_snapshot_count,
                "pending_loot": self._cache.pending_loot_count,
                "flushing": self.is_flushing,
            }
        )
        return status

    def _record_flush(self, kind: str, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.record_flush(kind, outcome)
