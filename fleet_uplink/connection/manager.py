"""
Fleet Uplink -- Connection Manager.

Reconnection / authentication state machine on top of a
:class:`~fleet_uplink.transport.session.TransportSession`.  See
:mod:`fleet_uplink.connection.state` for the transition table and the
backoff policy.

Guarantees
----------
- At most one authentication request is outstanding per physical
  connection (single-flight guard under ``_auth_lock``).
- At most one reconnect is pending at any time: the pending reconnect is a
  single task handle that is checked and set with no suspension point in
  between.
- A session is always detached (callbacks dropped) before it is closed,
  and every callback checks that it still belongs to the *current*
  session.  A late ``auth_response`` after :meth:`disconnect` is ignored.
- ``send_*`` never raise; they return whether the frame was written.

Usage::

    manager = ConnectionManager.from_settings(settings)
    manager.on_authenticated.add(coordinator.flush_all)
    await manager.connect()
"""

from __future__ import annotations

import asyncio
import functools
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from pydantic import ValidationError

from fleet_uplink.connection import state as policy
from fleet_uplink.connection.state import CONNECTED_STATES, ConnectionState
from fleet_uplink.events.models import LootRecord, utc_now
from fleet_uplink.events.wire import (
    AUTH_RESPONSE,
    AUTHENTICATE,
    DATA_RESPONSE,
    FLEET_DATA,
    LOOT_RESPONSE,
    PING,
    PONG,
    VOYAGE_LOOT,
    ServerResponse,
    build_authenticate,
    build_fleet_data,
    build_voyage_loot,
)
from fleet_uplink.transport.session import TransportSession
from fleet_uplink.utils.listeners import Listeners

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Owns the live transport session and drives the connection state machine."""

    def __init__(
        self,
        endpoint: str,
        credential: str,
        client_name: str,
        client_version: str,
        transport_factory: Optional[Callable[[], TransportSession]] = None,
        connect_timeout: float = 10.0,
        metrics: Any = None,
    ) -> None:
        self._endpoint = endpoint
        self._credential = credential
        self._client_name = client_name
        self._client_version = client_version
        self._transport_factory = transport_factory or (
            lambda: TransportSession(endpoint, connect_timeout=connect_timeout)
        )
        self._metrics = metrics

        self._session: TransportSession | None = None
        self._state: ConnectionState = ConnectionState.DISCONNECTED
        self._last_error: str | None = None
        self._next_retry_at: datetime | None = None
        self._attempts: int = 0
        self._should_reconnect: bool = False
        self._reconnect_task: asyncio.Task[None] | None = None

        # Single-flight authentication guard
        self._auth_lock = asyncio.Lock()
        self._authenticating: bool = False

        # Notifications (fired outside any lock, in registration order)
        self.on_connected = Listeners("connected")
        self.on_disconnected = Listeners("disconnected")
        self.on_authenticated = Listeners("authenticated")
        self.on_error = Listeners("error")
        self.on_status_changed = Listeners("status_changed")

    @classmethod
    def from_settings(cls, settings: Any, **kwargs: Any) -> ConnectionManager:
        return cls(
            endpoint=settings.endpoint,
            credential=settings.api_key,
            client_name=settings.nickname,
            client_version=settings.client_version,
            connect_timeout=settings.connect_timeout_seconds,
            **kwargs,
        )

    # -- read-only observability -------------------------------------------- #

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def next_retry_at(self) -> datetime | None:
        """When the pending reconnect fires; ``None`` if none is scheduled."""
        return self._next_retry_at

    @property
    def reconnect_attempts(self) -> int:
        return self._attempts

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None

    @property
    def is_connected(self) -> bool:
        return self._state in CONNECTED_STATES

    @property
    def is_authenticated(self) -> bool:
        return self._state is ConnectionState.AUTHENTICATED

    def status(self) -> dict[str, Any]:
        """The complete user-visible connection surface."""
        retry_in: float | None = None
        if self._next_retry_at is not None:
            retry_in = max(0.0, (self._next_retry_at - utc_now()).total_seconds())
        return {
            "state": self._state.value,
            "last_error": self._last_error,
            "next_retry_at": self._next_retry_at.isoformat() if self._next_retry_at else None,
            "retry_in_seconds": retry_in,
            "reconnect_attempts": self._attempts,
        }

    # -- state transitions -------------------------------------------------- #

    def _set_state(self, new_state: ConnectionState, error: str | None = None) -> None:
        old = self._state
        self._state = new_state
        self._last_error = error

        if new_state in (ConnectionState.CONNECTED, ConnectionState.AUTHENTICATED):
            self._next_retry_at = None
        # Only a successful authentication resets the retry count
        if new_state is ConnectionState.AUTHENTICATED:
            self._attempts = 0

        logger.info(
            "connection.state_change",
            extra={
                "from_state": old.value,
                "to_state": new_state.value,
                "error": error,
                "attempts": self._attempts,
            },
        )
        if self._metrics is not None:
            self._metrics.record_state(new_state, self._attempts)
        self.on_status_changed.fire(new_state)

    # -- public API --------------------------------------------------------- #

    async def connect(self) -> None:
        """(Re)start the connection.  Safe to call at any time."""
        self._should_reconnect = True
        self._cancel_reconnect()
        await self._open_session()

    async def disconnect(self) -> None:
        """Stop the connection and suppress automatic reconnection."""
        self._should_reconnect = False
        self._cancel_reconnect()
        self._attempts = 0
        async with self._auth_lock:
            self._authenticating = False

        session = self._take_session()
        self._set_state(ConnectionState.DISCONNECTED)
        await self._close_quietly(session)

    async def close(self) -> None:
        """Teardown: disconnect and wait for in-flight notification handlers."""
        await self.disconnect()
        for listeners in (
            self.on_connected,
            self.on_disconnected,
            self.on_authenticated,
            self.on_error,
            self.on_status_changed,
        ):
            await listeners.wait()

    async def send_snapshot(self, payload: dict[str, Any] | list[dict[str, Any]]) -> bool:
        """Send one snapshot (or a batch) as a ``fleet_data`` frame."""
        snapshots = payload if isinstance(payload, list) else [payload]
        session = self._session
        if not self.is_authenticated or session is None:
            logger.warning("Cannot send fleet data - not connected or authenticated")
            self._record_send("snapshot", "not_authenticated")
            return False

        try:
            await session.emit(FLEET_DATA, build_fleet_data(self._credential, snapshots))
        except Exception as exc:
            logger.error("Failed to send fleet data - %s", exc)
            self._record_send("snapshot", "error")
            return False

        logger.debug("Fleet data sent (%d snapshot(s))", len(snapshots))
        self._record_send("snapshot", "sent")
        return True

    async def send_loot(self, record: LootRecord) -> bool:
        """Send one ``voyage_loot`` frame."""
        session = self._session
        if not self.is_authenticated or session is None:
            logger.warning("Cannot send voyage loot - not connected or authenticated")
            self._record_send("loot", "not_authenticated")
            return False

        try:
            await session.emit(VOYAGE_LOOT, build_voyage_loot(self._credential, record))
        except Exception as exc:
            logger.error("Failed to send voyage loot - %s", exc)
            self._record_send("loot", "error")
            return False

        logger.info("Voyage loot sent for %s", record.submarine_name)
        self._record_send("loot", "sent")
        return True

    async def send_heartbeat(self) -> None:
        """Best-effort ``ping``; failures are logged and swallowed."""
        session = self._session
        if not self.is_connected or session is None:
            return
        try:
            await session.emit(PING)
        except Exception as exc:
            logger.debug("Ping failed - %s", exc)

    # -- session lifecycle -------------------------------------------------- #

    async def _open_session(self) -> None:
        async with self._auth_lock:
            self._authenticating = False

        # Install the new session before the first suspension
        old = self._take_session()
        session = self._transport_factory()
        self._wire(session)
        self._session = session
        self._set_state(ConnectionState.CONNECTING)
        logger.info("Connecting to %s", self._endpoint)

        await self._close_quietly(old)
        if session is not self._session:
            return

        try:
            await session.open()
        except Exception as exc:
            if session is not self._session:
                # Superseded by a newer connect() / disconnect()
                return
            message = str(exc) or type(exc).__name__
            logger.warning("Connection failed - %s", message)
            self._take_session()
            self._set_state(ConnectionState.UNREACHABLE, message)
            self.on_error.fire(f"Connection failed: {message}")
            self._schedule_reconnect()
            await self._close_quietly(session)

    def _wire(self, session: TransportSession) -> None:
        session.set_callbacks(
            on_connected=functools.partial(self._handle_connected, session),
            on_disconnected=functools.partial(self._handle_disconnected, session),
            on_error=functools.partial(self._handle_transport_error, session),
        )
        session.on(AUTH_RESPONSE, functools.partial(self._handle_auth_response, session))
        session.on(DATA_RESPONSE, functools.partial(self._log_response, "Fleet data"))
        session.on(LOOT_RESPONSE, functools.partial(self._log_response, "Voyage loot"))
        session.on(PONG, self._handle_pong)

    def _take_session(self) -> TransportSession | None:
        """Detach and forget the current session without suspending."""
        session, self._session = self._session, None
        if session is not None:
            session.detach()
        return session

    async def _close_quietly(self, session: TransportSession | None) -> None:
        if session is None:
            return
        try:
            await session.close()
        except Exception as exc:
            logger.debug("Session close error (ignored) - %s", exc)

    # -- transport callbacks ------------------------------------------------ #

    async def _handle_connected(self, session: TransportSession) -> None:
        if session is not self._session:
            return
        async with self._auth_lock:
            if self._authenticating:
                logger.debug("Authentication already in progress, skipping")
                return
            self._authenticating = True

        self._set_state(ConnectionState.CONNECTED)
        logger.info("Connected to server")
        self.on_connected.fire()
        await self._authenticate(session)

    async def _authenticate(self, session: TransportSession) -> None:
        if session is not self._session:
            return
        self._set_state(ConnectionState.AUTHENTICATING)
        try:
            await session.emit(
                AUTHENTICATE,
                build_authenticate(self._credential, self._client_name, self._client_version),
            )
        except Exception as exc:
            if session is not self._session:
                return
            message = str(exc) or type(exc).__name__
            logger.error("Failed to send authenticate - %s", message)
            self._take_session()
            self._set_state(ConnectionState.FAULT, message)
            self.on_error.fire(f"Authentication failed: {message}")
            self._schedule_reconnect()
            await self._close_quietly(session)
            return
        logger.info("Authenticate event sent")

    async def _handle_auth_response(self, session: TransportSession, data: Any) -> None:
        if session is not self._session or self._state is not ConnectionState.AUTHENTICATING:
            logger.debug("Ignoring stale auth_response (state=%s)", self._state.value)
            return

        try:
            response = ServerResponse.model_validate(data)
        except ValidationError as exc:
            logger.error("Error processing auth_response - %s", exc)
            self._take_session()
            self._set_state(ConnectionState.FAULT, "malformed auth_response")
            self._schedule_reconnect()
            await self._close_quietly(session)
            return

        if response.success:
            self._cancel_reconnect()
            self._set_state(ConnectionState.AUTHENTICATED)
            logger.info("Authenticated successfully")
            self.on_authenticated.fire()
            return

        error = response.error or "Unknown error"
        logger.error("Authentication failed - %s", error)
        self._take_session()
        if policy.is_credential_error(error):
            # Needs operator action; never self-heal a bad credential
            self._should_reconnect = False
            self._cancel_reconnect()
            self._set_state(ConnectionState.INVALID_CREDENTIAL, error)
        else:
            self._set_state(ConnectionState.FAULT, error)
            self._schedule_reconnect()
        self.on_error.fire(f"Authentication failed: {error}")
        await self._close_quietly(session)

    async def _handle_disconnected(self, session: TransportSession, reason: str) -> None:
        if session is not self._session:
            return
        self._take_session()
        async with self._auth_lock:
            self._authenticating = False

        self._set_state(ConnectionState.DISCONNECTED, reason)
        logger.info("Disconnected - %s", reason)
        self.on_disconnected.fire(reason)

        if self._should_reconnect and self._reconnect_task is None:
            self._schedule_reconnect()
        await self._close_quietly(session)

    def _handle_transport_error(self, session: TransportSession, message: str) -> None:
        if session is not self._session:
            return
        logger.error("Socket error - %s", message)
        self._set_state(ConnectionState.FAULT, message)
        self.on_error.fire(message)

    def _log_response(self, kind: str, data: Any) -> None:
        try:
            response = ServerResponse.model_validate(data)
        except ValidationError as exc:
            logger.warning("%s response has unexpected shape - %s", kind, exc)
            return
        if response.success:
            logger.debug("%s accepted by server - %s", kind, response.message or "")
        else:
            logger.error("%s rejected by server - %s", kind, response.error or "Unknown error")

    def _handle_pong(self, _data: Any) -> None:
        logger.debug("Pong received")

    # -- reconnect scheduling ----------------------------------------------- #

    def _schedule_reconnect(self) -> None:
        if not self._should_reconnect or self.is_connected or self._reconnect_task is not None:
            return

        delay = policy.reconnect_delay(self._attempts)
        self._next_retry_at = utc_now() + timedelta(seconds=delay)
        logger.info(
            "Will attempt reconnection in %s (attempt #%d)",
            policy.describe_delay(delay),
            self._attempts + 1,
        )
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect_after(delay), name="reconnect"
        )

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        self._next_retry_at = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._reconnect_task = None
        self._next_retry_at = None

        if not self._should_reconnect or self.is_connected:
            return

        self._attempts += 1
        logger.info("Attempting reconnection (attempt #%d)...", self._attempts)
        if self._metrics is not None:
            self._metrics.record_state(self._state, self._attempts)
        try:
            await self._open_session()
        except Exception as exc:
            logger.error("Reconnection attempt failed - %s", exc)
            self._schedule_reconnect()

    # -- helpers ------------------------------------------------------------ #

    def _record_send(self, kind: str, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.record_send(kind, outcome)

    def __repr__(self) -> str:
        return (
            f"ConnectionManager(endpoint={self._endpoint!r}, state={self._state.value}, "
            f"attempts={self._attempts})"
        )
