"""Tests for identifier helpers."""

import uuid

from fleet_uplink.utils.idempotency import generate_entry_id, loot_dedup_key


class TestGenerateEntryId:
    """Tests for UUIDv7 cache entry ids."""

    def test_unique(self):
        ids = {generate_entry_id(timestamp=1700000000.0) for _ in range(100)}
        assert len(ids) == 100

    def test_uuid_version_7(self):
        parsed = uuid.UUID(generate_entry_id())
        assert parsed.version == 7
        assert parsed.variant == uuid.RFC_4122

    def test_time_ordered(self):
        earlier = generate_entry_id(timestamp=1700000000.0)
        later = generate_entry_id(timestamp=1700000001.0)
        assert earlier < later

    def test_timestamp_prefix(self):
        entry_id = generate_entry_id(timestamp=1700000000.0)
        ts_ms = int(entry_id.replace("-", "")[:12], 16)
        assert ts_ms == 1700000000000


class TestLootDedupKey:

    def test_key(self):
        assert loot_dedup_key("Whale", "fc-1") == ("Whale", "fc-1")
        assert loot_dedup_key("Whale", "fc-1") != loot_dedup_key("Whale", "fc-2")
