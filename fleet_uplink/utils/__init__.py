"""Fleet Uplink -- Shared utility modules."""

from fleet_uplink.utils.idempotency import generate_entry_id, loot_dedup_key
from fleet_uplink.utils.listeners import Listeners

__all__ = [
    # idempotency
    "generate_entry_id",
    "loot_dedup_key",
    # observer registration
    "Listeners",
]
