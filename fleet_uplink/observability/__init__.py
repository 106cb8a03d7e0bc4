"""Fleet Uplink -- Prometheus metrics."""

from fleet_uplink.observability.metrics import MetricsCollector, get_metrics

__all__ = [
    "MetricsCollector",
    "get_metrics",
]
