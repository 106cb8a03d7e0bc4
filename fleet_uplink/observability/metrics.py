"""Prometheus Metrics.

What an operator needs to see from a running uplink:
- connection state + consecutive reconnect attempts
- live sends by kind/outcome
- payloads diverted into the retry cache, and the current backlog
- cache flush results by kind/outcome
"""

import logging
from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Info,
    start_http_server,
)

logger = logging.getLogger(__name__)


class MetricsCollector:
    """Uplink metrics on a private registry (safe to create more than once)."""

    def __init__(self, port: int = 0, registry: Optional[CollectorRegistry] = None):
        self._port = port
        self._started = False
        self.registry = registry if registry is not None else CollectorRegistry()

        # === Connection ===
        self.connection_state = Gauge(
            'fleet_uplink_connection_state',
            'Connection state ordinal (0=disconnected .. 7=fault)',
            registry=self.registry,
        )

        self.reconnect_attempts = Gauge(
            'fleet_uplink_reconnect_attempts',
            'Consecutive reconnect attempts since last authentication',
            registry=self.registry,
        )

        # === Sends ===
        self.sends = Counter(
            'fleet_uplink_sends_total',
            'Live send attempts',
            ['kind', 'outcome'],
            registry=self.registry,
        )

        # === Retry cache ===
        self.cached = Counter(
            'fleet_uplink_cached_total',
            'Payloads diverted into the retry cache',
            ['kind'],
            registry=self.registry,
        )

        self.pending = Gauge(
            'fleet_uplink_pending',
            'Payloads waiting in the retry cache',
            ['kind'],
            registry=self.registry,
        )

        self.flushed = Counter(
            'fleet_uplink_flushed_total',
            'Cached payload replays',
            ['kind', 'outcome'],
            registry=self.registry,
        )

        # === Build Info ===
        self.build_info = Info(
            'fleet_uplink_build',
            'Build information',
            registry=self.registry,
        )

    @property
    def port(self) -> int:
        return self._port

    def record_state(self, state, attempts: int):
        self.connection_state.set(state.ordinal)
        self.reconnect_attempts.set(attempts)

    def record_send(self, kind: str, outcome: str):
        self.sends.labels(kind=kind, outcome=outcome).inc()

    def record_cached(self, kind: str):
        self.cached.labels(kind=kind).inc()

    def set_pending(self, kind: str, count: int):
        self.pending.labels(kind=kind).set(count)

    def record_flush(self, kind: str, outcome: str):
        self.flushed.labels(kind=kind, outcome=outcome).inc()

    def start_server(self):
        """Start Prometheus HTTP server (no-op when port is 0)."""
        if self._started or self._port <= 0:
            return
        try:
            start_http_server(self._port, registry=self.registry)
            self._started = True
            logger.info(f"Prometheus metrics server started on port {self._port}")
        except OSError as e:
            logger.error(f"Failed to start metrics server: {e}")

    def set_build_info(self, version: str, client_name: str, endpoint: str):
        self.build_info.info({
            'version': version,
            'client_name': client_name,
            'endpoint': endpoint,
        })


# Singleton
_metrics: Optional[MetricsCollector] = None


def get_metrics(port: int = 0) -> MetricsCollector:
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector(port)
    return _metrics
