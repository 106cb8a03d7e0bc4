"""
Fleet Uplink -- connection subsystem.

Core components:
    ConnectionManager   -- reconnect / authenticate state machine
    ConnectionState     -- mutually exclusive connection states

Policy helpers:
    reconnect_delay     -- backoff table (1 s, 5 s x4, then 5 min)
    is_credential_error -- classifies an auth rejection
"""

from fleet_uplink.connection.manager import ConnectionManager
from fleet_uplink.connection.state import (
    CONNECTED_STATES,
    ConnectionState,
    is_credential_error,
    reconnect_delay,
)

__all__ = [
    "ConnectionManager",
    "ConnectionState",
    "CONNECTED_STATES",
    "is_credential_error",
    "reconnect_delay",
]
