"""
Fleet Uplink -- payload models and wire protocol.

Data models:
    FleetSnapshotRecord -- opaque fleet status capture
    LootItem            -- one sector's item outcome
    LootRecord          -- items from one completed voyage
    CachedSnapshot      -- retry-cache entry for a snapshot
    CachedLoot          -- retry-cache entry for a loot record
    CacheDocument       -- on-disk retry-cache layout

Wire protocol:
    encode_frame / decode_frame        -- named-event JSON envelope
    compress_payload / decompress_payload
    build_authenticate / build_fleet_data / build_voyage_loot
    ServerResponse                     -- inbound *_response shape
"""

from fleet_uplink.events.models import (
    CachedLoot,
    CachedSnapshot,
    CacheDocument,
    FleetSnapshotRecord,
    LootItem,
    LootRecord,
    utc_now,
)
from fleet_uplink.events.wire import (
    AUTH_RESPONSE,
    AUTHENTICATE,
    DATA_RESPONSE,
    FLEET_DATA,
    LOOT_RESPONSE,
    PING,
    PONG,
    VOYAGE_LOOT,
    FrameError,
    ServerResponse,
    build_authenticate,
    build_fleet_data,
    build_voyage_loot,
    compress_payload,
    decode_frame,
    decompress_payload,
    encode_frame,
)

__all__ = [
    # models
    "FleetSnapshotRecord",
    "LootItem",
    "LootRecord",
    "CachedSnapshot",
    "CachedLoot",
    "CacheDocument",
    "utc_now",
    # event names
    "AUTHENTICATE",
    "AUTH_RESPONSE",
    "FLEET_DATA",
    "DATA_RESPONSE",
    "VOYAGE_LOOT",
    "LOOT_RESPONSE",
    "PING",
    "PONG",
    # wire helpers
    "FrameError",
    "ServerResponse",
    "encode_frame",
    "decode_frame",
    "compress_payload",
    "decompress_payload",
    "build_authenticate",
    "build_fleet_data",
    "build_voyage_loot",
]
