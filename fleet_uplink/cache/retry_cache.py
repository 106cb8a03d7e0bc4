"""
Fleet Uplink -- Retry Cache for payloads that could not be delivered.

When a live send fails (not authenticated, or the transport write
raised), the payload lands here and is replayed after the next successful
authentication.  The cache is a single JSON document on disk
(``pending_data.json``) with two named arrays:

    fleetData   -- snapshots,   capped at ``max_snapshots`` (10)
    voyageLoot  -- loot records, capped at ``max_loot`` (500)

Rules:
- When an insert pushes a list over its cap, the entry with the smallest
  ``capturedAt`` is evicted.  This is timestamp order, not insertion
  order; under clock skew a recently inserted entry can be the one that
  goes.
- Loot duplicates (same submarine + FC, captured < 60 s apart) are
  rejected at insertion.
- In-memory state is the authority.  Disk is a write-behind mirror: every
  mutation sets a dirty flag and a save is attempted right after the
  mutation; a failed save is logged and retried on the next one.
- A corrupt or unreadable file never blocks startup; the cache starts
  empty instead.

All public operations are serialised under one re-entrant lock that also
covers the save step, so the class is safe to call from the event loop,
from worker threads, or from a producer outside the loop.
"""

from __future__ import annotations

import logging
import os
import threading
from datetime import datetime
from typing import Any

from fleet_uplink.events.models import (
    CachedLoot,
    CachedSnapshot,
    CacheDocument,
    FleetSnapshotRecord,
    LootRecord,
    utc_now,
)

logger = logging.getLogger(__name__)


class RetryCache:
    """Disk-backed, bounded, deduplicating queue of undelivered payloads.

    Args:
        path: Location of the backing JSON file.  Parent directories are
            created on first save.
        max_snapshots: Cap for pending snapshots.
        max_loot: Cap for pending loot records.
        duplicate_window_seconds: Loot records for the same submarine and
            FC captured closer together than this are duplicates.
        metrics: Optional :class:`~fleet_uplink.observability.metrics.MetricsCollector`.
    """

    CACHE_FILE_NAME: str = "pending_data.json"
    MAX_SNAPSHOT_ENTRIES: int = 10
    MAX_LOOT_ENTRIES: int = 500

    def __init__(
        self,
        path: str,
        max_snapshots: int = MAX_SNAPSHOT_ENTRIES,
        max_loot: int = MAX_LOOT_ENTRIES,
        duplicate_window_seconds: float = 60.0,
        metrics: Any = None,
    ) -> None:
        self._path: str = path
        self._max_snapshots = max_snapshots
        self._max_loot = max_loot
        self._duplicate_window = duplicate_window_seconds
        self._metrics = metrics

        self._lock = threading.RLock()
        self._doc: CacheDocument = CacheDocument()
        self._dirty: bool = False

        self._load()

    @classmethod
    def from_settings(cls, settings: Any, **kwargs: Any) -> RetryCache:
        return cls(
            path=settings.cache_path,
            max_snapshots=settings.max_cached_snapshots,
            max_loot=settings.max_cached_loot,
            duplicate_window_seconds=settings.loot_duplicate_window_seconds,
            **kwargs,
        )

    # -- read-only sizes (no lock: len() of a list is atomic) ----------------

    @property
    def path(self) -> str:
        return self._path

    @property
    def pending_snapshot_count(self) -> int:
        return len(self._doc.fleet_data)

    @property
    def pending_loot_count(self) -> int:
        return len(self._doc.voyage_loot)

    @property
    def has_pending(self) -> bool:
        return self.pending_snapshot_count > 0 or self.pending_loot_count > 0

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    # -- inserts -------------------------------------------------------------

    def add_snapshot(
        self,
        payload: dict[str, Any] | FleetSnapshotRecord,
        captured_at: datetime | None = None,
    ) -> CachedSnapshot:
        """Cache a snapshot, evicting the oldest entry if over the cap.

        A :class:`FleetSnapshotRecord` keeps its id and capture time; a bare
        payload map gets a fresh id stamped with the current time.

        Returns:
            The new cache entry.
        """
        if isinstance(payload, FleetSnapshotRecord):
            entry = CachedSnapshot(
                id=payload.id,
                data=payload.payload,
                captured_at=captured_at or payload.captured_at,
            )
        else:
            entry = CachedSnapshot(data=payload, captured_at=captured_at or utc_now())
        with self._lock:
            entries = self._doc.fleet_data
            entries.append(entry)
            evicted = self._evict_oldest(entries, self._max_snapshots)
            self._dirty = True
            pending = len(entries)

        for old in evicted:
            logger.debug("Removed oldest fleet data entry %s to make room", old.id)
        logger.info("Cached fleet data (%d pending)", pending)
        self._record_cached("snapshot", pending)
        self.save()
        return entry

    def add_loot(
        self,
        record: LootRecord,
        captured_at: datetime | None = None,
    ) -> CachedLoot | None:
        """Cache a loot record unless a duplicate is already pending.

        Returns:
            The new cache entry, or ``None`` if *record* was a duplicate.
        """
        with self._lock:
            entries = self._doc.voyage_loot
            for existing in entries:
                if existing.data.is_duplicate_of(record, self._duplicate_window):
                    logger.debug(
                        "Skipping duplicate loot entry for %s", record.submarine_name
                    )
                    return None

            entry = CachedLoot(
                id=record.id,
                data=record,
                captured_at=captured_at or record.captured_at,
            )
            entries.append(entry)
            evicted = self._evict_oldest(entries, self._max_loot)
            self._dirty = True
            pending = len(entries)

        for old in evicted:
            logger.debug("Removed oldest voyage loot entry %s to make room", old.id)
        logger.info(
            "Cached voyage loot for %s (%d pending)", record.submarine_name, pending
        )
        self._record_cached("loot", pending)
        self.save()
        return entry

    # -- reads ---------------------------------------------------------------

    def list_snapshots(self) -> list[CachedSnapshot]:
        """Point-in-time copy of pending snapshots, oldest insert first."""
        with self._lock:
            return [entry.model_copy(deep=True) for entry in self._doc.fleet_data]

    def list_loot(self) -> list[CachedLoot]:
        """Point-in-time copy of pending loot records, oldest insert first."""
        with self._lock:
            return [entry.model_copy(deep=True) for entry in self._doc.voyage_loot]

    # -- removal -------------------------------------------------------------

    def remove_snapshot(self, entry_id: str) -> bool:
        """Drop a delivered snapshot.  Unknown ids are a no-op."""
        return self._remove(self._doc.fleet_data, entry_id, "fleet data")

    def remove_loot(self, entry_id: str) -> bool:
        """Drop a delivered loot record.  Unknown ids are a no-op."""
        return self._remove(self._doc.voyage_loot, entry_id, "voyage loot")

    def remove(self, entry_id: str) -> bool:
        """Drop an entry of either kind by id."""
        return self.remove_snapshot(entry_id) or self.remove_loot(entry_id)

    def clear(self) -> None:
        """Empty both lists and persist."""
        with self._lock:
            self._doc.fleet_data.clear()
            self._doc.voyage_loot.clear()
            self._dirty = True

        self.save()
        self._record_pending()
        logger.info("Cleared all cached data")

    # -- persistence ---------------------------------------------------------

    def save(self, force: bool = False) -> bool:
        """Write the cache to disk if dirty (or unconditionally with *force*).

        Returns:
            ``True`` if the file is in sync with memory afterwards.
        """
        with self._lock:
            if not (self._dirty or force):
                return True
            try:
                self._write_atomic(self._doc.to_json())
            except (OSError, TypeError, ValueError) as exc:
                logger.error("Failed to save cache to %s: %s", self._path, exc)
                return False
            self._dirty = False
            return True

    def close(self) -> None:
        """Final flush on orderly shutdown."""
        self.save(force=True)

    def _write_atomic(self, text: str) -> None:
        directory = os.path.dirname(os.path.abspath(self._path))
        os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self._path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self._path)

    def _load(self) -> None:
        if not os.path.exists(self._path):
            return

        try:
            with open(self._path, "r", encoding="utf-8") as f:
                doc = CacheDocument.from_json(f.read())
        except (OSError, ValueError) as exc:
            # ValueError covers JSON decode and pydantic ValidationError
            logger.error("Failed to load cache from %s: %s", self._path, exc)
            self._doc = CacheDocument()
            return

        with self._lock:
            self._doc = doc
            trimmed = self._evict_oldest(doc.fleet_data, self._max_snapshots)
            trimmed += self._evict_oldest(doc.voyage_loot, self._max_loot)
            if trimmed:
                logger.warning(
                    "Dropped %d cached entries over capacity on load", len(trimmed)
                )
                self._dirty = True

        logger.info(
            "Loaded %d fleet data, %d voyage loot from cache",
            len(doc.fleet_data),
            len(doc.voyage_loot),
        )
        self._record_pending()

    # -- helpers -------------------------------------------------------------

    def _remove(self, entries: list[Any], entry_id: str, label: str) -> bool:
        with self._lock:
            for index, entry in enumerate(entries):
                if entry.id == entry_id:
                    del entries[index]
                    self._dirty = True
                    remaining = len(entries)
                    break
            else:
                return False

        logger.debug("Removed sent %s (%d remaining)", label, remaining)
        self._record_pending()
        self.save()
        return True

    @staticmethod
    def _evict_oldest(entries: list[Any], cap: int) -> list[Any]:
        """Drop smallest-``captured_at`` entries until ``len(entries) <= cap``."""
        evicted: list[Any] = []
        while len(entries) > cap:
            index = min(range(len(entries)), key=lambda i: entries[i].captured_at)
            evicted.append(entries.pop(index))
        return evicted

    def _record_cached(self, kind: str, pending: int) -> None:
        if self._metrics is not None:
            self._metrics.record_cached(kind)
            self._metrics.set_pending(kind, pending)

    def _record_pending(self) -> None:
        if self._metrics is not None:
            self._metrics.set_pending("snapshot", self.pending_snapshot_count)
            self._metrics.set_pending("loot", self.pending_loot_count)

    def __repr__(self) -> str:
        return (
            f"RetryCache(path={self._path!r}, snapshots={self.pending_snapshot_count}"
            f"/{self._max_snapshots}, loot={self.pending_loot_count}/{self._max_loot})"
        )
