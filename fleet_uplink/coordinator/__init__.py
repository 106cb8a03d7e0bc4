"""
Fleet Uplink -- submission policy and producers.

Core components:
    SubmissionCoordinator  -- send-or-cache, cache drain on authentication
    PeriodicSync           -- timed snapshot sync, heartbeat, loot inbox
    JsonFileSnapshotSource -- snapshot producer backed by a JSON file
    LootInbox              -- loot producer backed by a directory
"""

from fleet_uplink.coordinator.scheduler import PeriodicSync
from fleet_uplink.coordinator.sources import JsonFileSnapshotSource, LootInbox
from fleet_uplink.coordinator.submission import SnapshotSource, SubmissionCoordinator

__all__ = [
    "SubmissionCoordinator",
    "SnapshotSource",
    "PeriodicSync",
    "JsonFileSnapshotSource",
    "LootInbox",
]
