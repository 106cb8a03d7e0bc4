"""Periodic Sync - timed producers around the submission coordinator.

Three background loops, each optional:

- snapshot sync: every ``sync_interval`` seconds, capture and submit a
  fresh snapshot while authenticated (skipped otherwise; the coordinator
  already sends one on every authentication)
- heartbeat: every ``heartbeat_interval`` seconds, ``ping`` while connected
- loot inbox: every ``inbox_interval`` seconds, submit loot records that
  the capture process dropped into the inbox directory
"""

import asyncio
import logging
from typing import Optional

from fleet_uplink.connection.manager import ConnectionManager
from fleet_uplink.coordinator.sources import LootInbox
from fleet_uplink.coordinator.submission import SubmissionCoordinator

logger = logging.getLogger(__name__)


class PeriodicSync:
    """Owns the timed loops; ``start()`` spawns them, ``stop()`` cancels them."""

    def __init__(
        self,
        coordinator: SubmissionCoordinator,
        manager: ConnectionManager,
        sync_interval: float = 300.0,
        heartbeat_interval: float = 30.0,
        loot_inbox: Optional[LootInbox] = None,
        inbox_interval: float = 5.0,
    ):
        self._coordinator = coordinator
        self._manager = manager
        self._sync_interval = sync_interval
        self._heartbeat_interval = heartbeat_interval
        self._loot_inbox = loot_inbox
        self._inbox_interval = inbox_interval

        self._running = False
        self._tasks: list[asyncio.Task] = []

        # Metrics
        self._syncs_sent = 0
        self._syncs_skipped = 0
        self._heartbeats_sent = 0

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self):
        if self._running:
            return
        self._running = True
        if self._sync_interval > 0:
            self._tasks.append(asyncio.create_task(self._sync_loop(), name="snapshot-sync"))
        if self._heartbeat_interval > 0:
            self._tasks.append(asyncio.create_task(self._heartbeat_loop(), name="heartbeat"))
        if self._loot_inbox is not None and self._inbox_interval > 0:
            self._tasks.append(asyncio.create_task(self._inbox_loop(), name="loot-inbox"))
        logger.info(f"Periodic sync started ({len(self._tasks)} loop(s))")

    async def stop(self):
        self._running = False
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Periodic sync stopped")

    async def sync_once(self) -> bool:
        """One snapshot-sync tick.  Returns whether a snapshot was delivered."""
        if not self._manager.is_authenticated:
            logger.debug("Skipping send - not connected")
            self._syncs_skipped += 1
            return False
        delivered = await self._coordinator.send_now()
        if delivered:
            self._syncs_sent += 1
        return delivered

    async def _sync_loop(self):
        while self._running:
            await asyncio.sleep(self._sync_interval)
            try:
                await self.sync_once()
            except Exception as e:
                logger.error(f"Periodic snapshot sync failed: {e}")

    async def _heartbeat_loop(self):
        while self._running:
            await asyncio.sleep(self._heartbeat_interval)
            if self._manager.is_connected:
                await self._manager.send_heartbeat()
                self._heartbeats_sent += 1

    async def _inbox_loop(self):
        while self._running:
            try:
                await self._loot_inbox.drain(self._coordinator)
            except Exception as e:
                logger.error(f"Loot inbox scan failed: {e}")
            await asyncio.sleep(self._inbox_interval)

    def get_metrics(self) -> dict:
        return {
            "running": self._running,
            "syncs_sent": self._syncs_sent,
            "syncs_skipped": self._syncs_skipped,
            "heartbeats_sent": self._heartbeats_sent,
        }
