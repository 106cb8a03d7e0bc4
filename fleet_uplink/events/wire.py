"""
Fleet Uplink -- Wire protocol.

Named-event messaging over a persistent duplex connection.  Every frame on
the WebSocket is a JSON text message shaped as::

    {"event": "<name>", "data": <payload or null>}

Outbound / inbound pairs:

    authenticate   -> auth_response   {success, error?}
    fleet_data     -> data_response   {success, message?, error?}
    voyage_loot    -> loot_response   {success, message?, error?}
    ping           <- pong            (logged only)

``fleet_data.data`` is the JSON-serialised snapshot array, gzip-compressed
and then base64-encoded.  Outbound field names are the ones the
aggregation service expects (``api_key``, ``fc_id``, ``total_gil_value``...).
"""
from __future__ import annotations

import base64
import gzip
import json
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from fleet_uplink.events.models import LootRecord, utc_now

# ---------------------------------------------------------------------------
# Event names
# ---------------------------------------------------------------------------
AUTHENTICATE = "authenticate"
AUTH_RESPONSE = "auth_response"
FLEET_DATA = "fleet_data"
DATA_RESPONSE = "data_response"
VOYAGE_LOOT = "voyage_loot"
LOOT_RESPONSE = "loot_response"
PING = "ping"
PONG = "pong"


class FrameError(ValueError):
    """Raised when an inbound frame is not a valid named-event envelope."""


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------
def encode_frame(event: str, data: Any = None) -> str:
    return json.dumps({"event": event, "data": data}, separators=(",", ":"))


def decode_frame(raw: str | bytes) -> tuple[str, Any]:
    """Split a text frame into ``(event, data)``.

    Raises:
        FrameError: The frame is not JSON or has no string ``event`` field.
    """
    try:
        message = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise FrameError(f"frame is not valid JSON: {exc}") from exc

    if not isinstance(message, dict) or not isinstance(message.get("event"), str):
        raise FrameError("frame has no 'event' name")
    return message["event"], message.get("data")


# ---------------------------------------------------------------------------
# Compression
# ---------------------------------------------------------------------------
def compress_payload(payload: Any) -> str:
    """JSON-serialise *payload*, gzip it, and return base64 text."""
    raw = json.dumps(payload, default=str).encode("utf-8")
    return base64.b64encode(gzip.compress(raw)).decode("ascii")


def decompress_payload(data: str) -> Any:
    """Inverse of :func:`compress_payload`."""
    return json.loads(gzip.decompress(base64.b64decode(data)).decode("utf-8"))


# ---------------------------------------------------------------------------
# Outbound payloads
# ---------------------------------------------------------------------------
def build_authenticate(credential: str, client_name: str, client_version: str) -> dict[str, Any]:
    return {
        "api_key": credential,
        "nickname": client_name,
        "plugin_version": client_version,
    }


def build_fleet_data(
    credential: str,
    snapshots: list[dict[str, Any]],
    timestamp: Optional[datetime] = None,
) -> dict[str, Any]:
    return {
        "api_key": credential,
        "timestamp": (timestamp or utc_now()).isoformat(),
        "compressed": True,
        "data": compress_payload(snapshots),
    }


def build_voyage_loot(credential: str, record: LootRecord) -> dict[str, Any]:
    items = [
        item.model_dump(
            include={
                "sector_id",
                "item_id_primary",
                "item_name_primary",
                "count_primary",
                "hq_primary",
                "vendor_price_primary",
                "item_id_additional",
                "item_name_additional",
                "count_additional",
                "hq_additional",
                "vendor_price_additional",
            }
        )
        for item in record.items
    ]
    return {
        "api_key": credential,
        "character_name": record.character_name,
        "fc_id": record.faction_id,
        "fc_tag": record.faction_tag,
        "submarine_name": record.submarine_name,
        "sectors": list(record.sectors),
        "items": items,
        "total_gil_value": record.total_value,
        "captured_at": record.captured_at.isoformat(),
    }


# ---------------------------------------------------------------------------
# Inbound responses
# ---------------------------------------------------------------------------
class ServerResponse(BaseModel):
    """Shape shared by ``auth_response``, ``data_response`` and ``loot_response``."""

    model_config = ConfigDict(extra="allow")

    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
