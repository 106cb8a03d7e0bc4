"""Tests for the Prometheus collector."""

from fleet_uplink.connection.state import ConnectionState
from fleet_uplink.observability.metrics import MetricsCollector


class TestMetricsCollector:

    def test_independent_registries(self):
        a = MetricsCollector()
        b = MetricsCollector()
        a.record_send("snapshot", "sent")
        assert a.registry.get_sample_value(
            "fleet_uplink_sends_total", {"kind": "snapshot", "outcome": "sent"}
        ) == 1.0
        assert b.registry.get_sample_value(
            "fleet_uplink_sends_total", {"kind": "snapshot", "outcome": "sent"}
        ) is None

    def test_state_and_backlog(self):
        metrics = MetricsCollector()
        metrics.record_state(ConnectionState.AUTHENTICATED, 0)
        metrics.set_pending("loot", 7)
        metrics.record_cached("loot")
        metrics.record_flush("loot", "failed")

        sample = metrics.registry.get_sample_value
        assert sample("fleet_uplink_connection_state") == ConnectionState.AUTHENTICATED.ordinal
        assert sample("fleet_uplink_reconnect_attempts") == 0
        assert sample("fleet_uplink_pending", {"kind": "loot"}) == 7
        assert sample("fleet_uplink_cached_total", {"kind": "loot"}) == 1
        assert sample("fleet_uplink_flushed_total", {"kind": "loot", "outcome": "failed"}) == 1

    def test_server_disabled_without_port(self):
        metrics = MetricsCollector(port=0)
        metrics.start_server()
        assert not metrics._started
