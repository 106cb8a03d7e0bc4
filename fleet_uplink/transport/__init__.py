"""Fleet Uplink -- transport layer (one WebSocket per session)."""

from fleet_uplink.transport.session import TransportError, TransportSession

__all__ = [
    "TransportError",
    "TransportSession",
]
