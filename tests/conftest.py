"""Pytest configuration and shared fixtures."""
import asyncio
import os
import sys
import tempfile

import pytest

# Ensure the project root is on sys.path so 'fleet_uplink' is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from fleet_uplink.connection import state as policy
from fleet_uplink.connection.manager import ConnectionManager
from fleet_uplink.events.models import LootItem, LootRecord
from fleet_uplink.transport.session import TransportError


class FakeTransport:
    """In-memory stand-in for TransportSession.

    ``open()`` reports connected the same way the real session does; the
    test then plays the server with :meth:`deliver` and :meth:`drop`.
    """

    def __init__(self, fail_open=None, fail_emit=None, auto_connect=True):
        self.fail_open = fail_open
        self.fail_emit = fail_emit
        self.auto_connect = auto_connect
        self.sent = []
        self.opened = False
        self.closed = False
        self.detached = False
        self._on_connected = None
        self._on_disconnected = None
        self._on_error = None
        self._handlers = {}

    def set_callbacks(self, on_connected=None, on_disconnected=None, on_error=None):
        self._on_connected = on_connected
        self._on_disconnected = on_disconnected
        self._on_error = on_error

    def on(self, event, handler):
        self._handlers[event] = handler

    def off(self, event):
        self._handlers.pop(event, None)

    def detach(self):
        self.detached = True
        self._on_connected = None
        self._on_disconnected = None
        self._on_error = None
        self._handlers.clear()

    async def open(self):
        if self.fail_open:
            raise TransportError(self.fail_open)
        self.opened = True
        if self.auto_connect:
            await self.fire_connected()

    async def emit(self, event, data=None):
        if self.fail_emit and event in self.fail_emit:
            raise TransportError(f"send '{event}' failed")
        self.sent.append((event, data))

    async def close(self):
        self.closed = True

    # -- server side ------------------------------------------------------

    def events(self, name):
        return [data for event, data in self.sent if event == name]

    async def fire_connected(self):
        if self._on_connected is not None:
            await self._on_connected()

    async def deliver(self, event, data):
        handler = self._handlers.get(event)
        if handler is None:
            return
        result = handler(data)
        if asyncio.iscoroutine(result):
            await result

    async def drop(self, reason="transport close"):
        if self._on_disconnected is not None:
            await self._on_disconnected(reason)

    async def error(self, message):
        if self._on_error is not None:
            self._on_error(message)


class TransportFactory:
    """Hands out FakeTransports; ``plan`` pre-configures the next ones."""

    def __init__(self):
        self.created = []
        self.plan = []

    def __call__(self):
        transport = self.plan.pop(0) if self.plan else FakeTransport()
        self.created.append(transport)
        return transport

    @property
    def last(self):
        return self.created[-1]


@pytest.fixture
def transports():
    return TransportFactory()


@pytest.fixture
def manager(transports):
    return ConnectionManager(
        endpoint="ws://uplink.test/plugin",
        credential="secret-key",
        client_name="Tester",
        client_version="1.0.0",
        transport_factory=transports,
    )


@pytest.fixture
def instant_retry(monkeypatch):
    """Make every reconnect fire on the next loop iteration."""
    monkeypatch.setattr(policy, "reconnect_delay", lambda attempts: 0.0)


@pytest.fixture
def cache_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def make_loot():
    def _make(submarine="Whale", faction="fc-1", captured_at=None, **kwargs):
        fields = dict(
            character_name="Tester",
            faction_id=faction,
            faction_tag="TAG",
            submarine_name=submarine,
            sectors=[1, 2],
            items=[
                LootItem(
                    sector_id=1,
                    item_id_primary=100,
                    item_name_primary="Salvaged Ring",
                    count_primary=2,
                    vendor_price_primary=1000,
                )
            ],
        )
        if captured_at is not None:
            fields["captured_at"] = captured_at
        fields.update(kwargs)
        return LootRecord(**fields)

    return _make


async def authenticate(manager, transports):
    """Connect and answer the auth request with success."""
    await manager.connect()
    await transports.last.deliver("auth_response", {"success": True})
    await manager.on_authenticated.wait()
