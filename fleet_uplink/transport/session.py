"""Transport Session - one physical WebSocket to the aggregation service.

A session owns a single ``aiohttp`` WebSocket and speaks the named-event
envelope from :mod:`fleet_uplink.events.wire`.  It knows nothing about
authentication or reconnection; it only reports what happened:

- ``on_connected()``          -- handshake completed
- ``on_disconnected(reason)`` -- the socket closed for any reason other
                                 than a local :meth:`close`
- ``on_error(message)``       -- the socket reported a protocol error
- ``on(event, handler)``      -- inbound named messages

Owners MUST call :meth:`detach` before disposing of a session so a
socket that is still winding down cannot drive their state machine.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

import aiohttp

from fleet_uplink.events.wire import FrameError, decode_frame, encode_frame

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Raised when the session cannot be opened or a frame cannot be sent."""


class TransportSession:
    """Duplex named-event channel over a single WebSocket."""

    def __init__(
        self,
        url: str,
        connect_timeout: float = 10.0,
        heartbeat: Optional[float] = None,
    ):
        self._url = url
        self._connect_timeout = connect_timeout
        self._heartbeat = heartbeat

        self._http: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._reader: Optional[asyncio.Task] = None
        self._closing = False

        self._on_connected: Optional[Callable[[], Any]] = None
        self._on_disconnected: Optional[Callable[[str], Any]] = None
        self._on_error: Optional[Callable[[str], Any]] = None
        self._handlers: dict[str, Callable[[Any], Any]] = {}

    @property
    def url(self) -> str:
        return self._url

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._ws.closed

    # ------------------------------------------------------------------
    # Callback wiring
    # ------------------------------------------------------------------

    def set_callbacks(
        self,
        on_connected: Optional[Callable[[], Any]] = None,
        on_disconnected: Optional[Callable[[str], Any]] = None,
        on_error: Optional[Callable[[str], Any]] = None,
    ):
        self._on_connected = on_connected
        self._on_disconnected = on_disconnected
        self._on_error = on_error

    def on(self, event: str, handler: Callable[[Any], Any]):
        """Route inbound frames named *event* to *handler*."""
        self._handlers[event] = handler

    def off(self, event: str):
        self._handlers.pop(event, None)

    def detach(self):
        """Drop every callback and message handler."""
        self._on_connected = None
        self._on_disconnected = None
        self._on_error = None
        self._handlers.clear()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self):
        """Open the WebSocket, start the reader, then report ``on_connected``.

        Raises:
            TransportError: The endpoint is unreachable or the handshake failed.
        """
        if self._ws is not None:
            raise TransportError("session already opened")

        http = self._http = aiohttp.ClientSession()
        try:
            ws = await asyncio.wait_for(
                http.ws_connect(self._url, heartbeat=self._heartbeat),
                timeout=self._connect_timeout,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as e:
            await http.close()
            self._http = None
            message = str(e) or type(e).__name__
            raise TransportError(message) from e

        if self._closing:
            # close() ran during the handshake
            await ws.close()
            await http.close()
            raise TransportError("session closed while opening")
        self._ws = ws

        logger.debug(f"WebSocket open: {self._url}")
        self._reader = asyncio.create_task(self._read_loop(), name="transport-reader")
        await self._fire(self._on_connected)

    async def emit(self, event: str, data: Any = None):
        """Send one named frame.

        Raises:
            TransportError: The session is not open or the write failed.
        """
        ws = self._ws
        if ws is None or ws.closed:
            raise TransportError("session is not open")
        try:
            await ws.send_str(encode_frame(event, data))
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
            raise TransportError(f"send '{event}' failed: {e}") from e

    async def close(self):
        """Close the socket locally.  Does not report ``on_disconnected``."""
        self._closing = True
        reader, self._reader = self._reader, None
        ws, self._ws = self._ws, None
        http, self._http = self._http, None

        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"WebSocket close error (ignored): {e}")

        # close() may run inside the reader itself (from a message handler)
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass

        if http is not None:
            await http.close()

    # ------------------------------------------------------------------
    # Reader
    # ------------------------------------------------------------------

    async def _read_loop(self):
        ws = self._ws
        reason = "connection closed"
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self._dispatch(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    reason = str(ws.exception() or "websocket error")
                    await self._fire(self._on_error, reason)
                    break
            if ws.close_code is not None:
                reason = f"connection closed (code {ws.close_code})"
        except asyncio.CancelledError:
            raise
        except Exception as e:
            reason = str(e) or type(e).__name__

        if not self._closing:
            logger.debug(f"WebSocket closed by remote: {reason}")
            await self._fire(self._on_disconnected, reason)

    async def _dispatch(self, raw: str):
        try:
            event, data = decode_frame(raw)
        except FrameError as e:
            logger.warning(f"Dropping malformed frame: {e}")
            return

        handler = self._handlers.get(event)
        if handler is None:
            logger.debug(f"No handler for inbound event '{event}'")
            return
        await self._fire(handler, data)

    async def _fire(self, callback: Optional[Callable[..., Any]], *args: Any):
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Transport callback {callback!r} raised: {e}", exc_info=True)
