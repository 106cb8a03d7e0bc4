"""Fleet Uplink -- reliable delivery of fleet snapshots and voyage loot.

Uploads periodically-captured fleet status and voyage loot records to a
remote aggregation service over a persistent, authenticated WebSocket,
buffering anything that cannot be sent to a disk-backed retry cache.
"""

__version__ = "1.0.0"
