"""
Fleet Uplink -- connection states and reconnect policy.

State machine
-------------
    DISCONNECTED --connect()----------------> CONNECTING
    CONNECTING   --transport opened---------> CONNECTED
    CONNECTING   --open raised--------------> UNREACHABLE      (reconnect scheduled)
    CONNECTED    --auth request sent--------> AUTHENTICATING
    AUTHENTICATING --auth ok----------------> AUTHENTICATED    (attempts reset to 0)
    AUTHENTICATING --auth rejected, bad key-> INVALID_CREDENTIAL (no retry)
    AUTHENTICATING --auth rejected, other---> FAULT            (reconnect scheduled)
    any          --transport dropped--------> DISCONNECTED     (reconnect scheduled)
    any          --disconnect()-------------> DISCONNECTED     (reconnect suppressed)

Backoff
-------
The delay before the next attempt is a pure function of the attempt
counter *before* it is incremented:

    attempts == 0    ->  1 s    (let the old socket release)
    attempts 1..4    ->  5 s
    attempts >= 5    ->  5 min
"""

from __future__ import annotations

import enum

FIRST_RETRY_DELAY_SECONDS: float = 1.0
QUICK_RETRY_DELAY_SECONDS: float = 5.0
SLOW_RETRY_DELAY_SECONDS: float = 5 * 60.0
MAX_QUICK_RETRIES: int = 5

CREDENTIAL_ERROR_KEYWORDS: tuple[str, ...] = ("invalid", "api key", "unauthorized")


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    INVALID_CREDENTIAL = "invalid_credential"
    UNREACHABLE = "unreachable"
    FAULT = "fault"

    @property
    def ordinal(self) -> int:
        """Stable numeric code (for the state gauge)."""
        return list(ConnectionState).index(self)


# States in which a physical connection is up.
CONNECTED_STATES = frozenset(
    {
        ConnectionState.CONNECTED,
        ConnectionState.AUTHENTICATING,
        ConnectionState.AUTHENTICATED,
    }
)


def reconnect_delay(attempts: int) -> float:
    """Seconds to wait before the next reconnect, given attempts made so far."""
    if attempts <= 0:
        return FIRST_RETRY_DELAY_SECONDS
    if attempts < MAX_QUICK_RETRIES:
        return QUICK_RETRY_DELAY_SECONDS
    return SLOW_RETRY_DELAY_SECONDS


def describe_delay(seconds: float) -> str:
    if seconds >= 60 and seconds % 60 == 0:
        minutes = int(seconds // 60)
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    return f"{seconds:g} second{'s' if seconds != 1 else ''}"


def is_credential_error(error: str | None) -> bool:
    """True when an auth rejection points at the credential (case-insensitive)."""
    if not error:
        return False
    lowered = error.lower()
    return any(keyword in lowered for keyword in CREDENTIAL_ERROR_KEYWORDS)
