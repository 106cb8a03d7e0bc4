"""Fleet Uplink -- durable retry cache for undelivered payloads."""

from fleet_uplink.cache.retry_cache import RetryCache

__all__ = [
    "RetryCache",
]
