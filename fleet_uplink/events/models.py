"""
Fleet Uplink -- Data model.

Two payload kinds travel from the client to the aggregation service:

    FleetSnapshotRecord   -- point-in-time fleet status for one account.
                             The ``payload`` map is owned by the capture
                             process and treated as opaque here.
    LootRecord            -- items obtained from one completed voyage.

The retry cache persists undelivered payloads as a :class:`CacheDocument`
with two named arrays (``fleetData`` / ``voyageLoot``).  Every model keeps
unknown fields (``extra="allow"``) so a file written by a newer client
still loads.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from fleet_uplink.utils.idempotency import generate_entry_id, loot_dedup_key


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps (older files, hand-written inbox records) are UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


# ---------------------------------------------------------------------------
# Fleet snapshots
# ---------------------------------------------------------------------------
class FleetSnapshotRecord(BaseModel):
    """A captured fleet snapshot.  Never deduplicated, only volume-capped."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(default_factory=generate_entry_id)
    captured_at: UtcDatetime = Field(default_factory=utc_now)
    payload: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Voyage loot
# ---------------------------------------------------------------------------
class LootItem(BaseModel):
    """Outcome of one sector: a primary and an optional additional item."""

    model_config = ConfigDict(extra="allow")

    sector_id: int = 0

    item_id_primary: int = 0
    item_name_primary: str = ""
    count_primary: int = 0
    hq_primary: bool = False
    vendor_price_primary: int = 0

    item_id_additional: int = 0
    item_name_additional: str = ""
    count_additional: int = 0
    hq_additional: bool = False
    vendor_price_additional: int = 0

    @property
    def value(self) -> int:
        return (
            self.vendor_price_primary * self.count_primary
            + self.vendor_price_additional * self.count_additional
        )


class LootRecord(BaseModel):
    """Report of items obtained from one completed voyage.

    Two records are duplicates iff ``submarine_name`` and ``faction_id``
    match and their ``captured_at`` values are less than the duplicate
    window apart (one minute by default).  Duplicates are rejected by the
    retry cache, never merged.
    """

    model_config = ConfigDict(extra="allow")

    id: str = Field(default_factory=generate_entry_id)
    captured_at: UtcDatetime = Field(default_factory=utc_now)
    character_name: str = ""
    faction_id: str = ""
    faction_tag: str = ""
    submarine_name: str = ""
    sectors: list[int] = Field(default_factory=list)
    items: list[LootItem] = Field(default_factory=list)

    @property
    def total_value(self) -> int:
        """Vendor value of everything in :attr:`items`."""
        return sum(item.value for item in self.items)

    def is_duplicate_of(self, other: LootRecord, window_seconds: float = 60.0) -> bool:
        if loot_dedup_key(self.submarine_name, self.faction_id) != loot_dedup_key(
            other.submarine_name, other.faction_id
        ):
            return False
        delta = abs((self.captured_at - other.captured_at).total_seconds())
        return delta < window_seconds


# ---------------------------------------------------------------------------
# Retry cache file
# ---------------------------------------------------------------------------
class CachedSnapshot(BaseModel):
    """A fleet snapshot waiting in the retry cache."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(default_factory=generate_entry_id)
    captured_at: UtcDatetime = Field(default_factory=utc_now, alias="capturedAt")
    data: dict[str, Any] = Field(default_factory=dict)


class CachedLoot(BaseModel):
    """A voyage loot record waiting in the retry cache."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(default_factory=generate_entry_id)
    captured_at: UtcDatetime = Field(default_factory=utc_now, alias="capturedAt")
    data: LootRecord


class CacheDocument(BaseModel):
    """On-disk layout of the retry cache (``pending_data.json``)."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    fleet_data: list[CachedSnapshot] = Field(default_factory=list, alias="fleetData")
    voyage_loot: list[CachedLoot] = Field(default_factory=list, alias="voyageLoot")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)

    @classmethod
    def from_json(cls, json_str: str | bytes) -> CacheDocument:
        return cls.model_validate_json(json_str)
