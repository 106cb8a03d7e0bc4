"""
Fleet Uplink -- identifier helpers.

* ``generate_entry_id`` -- time-ordered unique ID for a cached payload.
* ``loot_dedup_key``    -- coarse identity of a voyage (submarine + FC).
"""

from __future__ import annotations

import os
import struct
import time
import uuid


# --------------------------------------------------------------------------- #
# Entry ID  (UUIDv7: timestamp-prefixed, random suffix)
# --------------------------------------------------------------------------- #


def generate_entry_id(timestamp: float | None = None) -> str:
    """Build a unique, time-sortable identifier for a cache entry.

    The top 48 bits carry the millisecond Unix timestamp and the remaining
    bits are random, with version / variant bits set per RFC 9562.

    Parameters
    ----------
    timestamp:
        Unix epoch seconds.  Defaults to ``time.time()``.

    Returns
    -------
    str
        UUID-formatted string, e.g.
        ``"018f3c8a-1b2c-7abc-9def-0123456789ab"``.
    """
    if timestamp is None:
        timestamp = time.time()

    ts_ms = int(timestamp * 1000)
    ts_bytes = struct.pack(">Q", ts_ms)[2:]  # last 6 bytes of 8-byte big-endian

    raw = bytearray(ts_bytes + os.urandom(10))

    # Set version nibble (bits 48-51) to 0x7 -- UUIDv7
    raw[6] = (raw[6] & 0x0F) | 0x70
    # Set variant bits (bits 64-65) to 0b10 -- RFC 9562
    raw[8] = (raw[8] & 0x3F) | 0x80

    return str(uuid.UUID(bytes=bytes(raw)))


# --------------------------------------------------------------------------- #
# Loot dedup key
# --------------------------------------------------------------------------- #


def loot_dedup_key(submarine_name: str, faction_id: str) -> tuple[str, str]:
    """Identity part of the loot duplicate predicate.

    Two loot records with the same key are duplicates when their capture
    times are also within the configured window; see
    :meth:`fleet_uplink.events.models.LootRecord.is_duplicate_of`.
    """
    return (submarine_name, faction_id)
