"""
Fleet Uplink -- Centralised configuration via pydantic-settings.

Every tunable knob lives here.  Environment variables override defaults
using the ``FLEET_UPLINK_`` prefix (e.g. ``FLEET_UPLINK_API_KEY=...``).

Usage:
    from fleet_uplink.config.settings import get_settings
    settings = get_settings()          # cached accessor for the composition root
    print(settings.server_url)

Only ``fleet_uplink.main`` calls :func:`get_settings`; every other component
receives the values it needs explicitly.
"""

from __future__ import annotations

import socket
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from fleet_uplink import __version__


class UplinkSettings(BaseSettings):
    """Top-level configuration for the uplink client."""

    # ------------------------------------------------------------------
    # Remote service
    # ------------------------------------------------------------------
    server_url: str = ""  # e.g. ws://localhost:5000
    namespace_path: str = "/plugin"
    api_key: str = ""
    nickname: str = Field(default_factory=socket.gethostname)
    client_version: str = __version__
    enabled: bool = True  # auto-connect on start
    connect_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Retry cache
    # ------------------------------------------------------------------
    cache_path: str = "./data/pending_data.json"
    max_cached_snapshots: int = 10
    max_cached_loot: int = 500
    loot_duplicate_window_seconds: float = 60.0

    # ------------------------------------------------------------------
    # Flush pacing
    # ------------------------------------------------------------------
    snapshot_flush_delay_seconds: float = 0.5
    loot_flush_delay_seconds: float = 0.25

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------
    sync_interval_seconds: float = 300.0
    heartbeat_interval_seconds: float = 30.0
    snapshot_file: str = ""  # JSON document re-read on every sync
    loot_inbox_dir: str = ""  # directory of *.json loot records
    loot_inbox_poll_seconds: float = 5.0

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------
    prometheus_port: int = 0  # 0 disables the exporter
    log_level: str = "INFO"
    log_format: str = "text"  # json | text

    # ------------------------------------------------------------------
    # Pydantic-settings config
    # ------------------------------------------------------------------
    model_config = SettingsConfigDict(
        env_prefix="FLEET_UPLINK_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    @property
    def is_configured(self) -> bool:
        """True once both an endpoint and a credential have been supplied."""
        return bool(self.server_url) and bool(self.api_key)

    @property
    def endpoint(self) -> str:
        """Full WebSocket URL: server URL joined with the namespace path."""
        return self.server_url.rstrip("/") + self.namespace_path


@lru_cache(maxsize=1)
def get_settings() -> UplinkSettings:
    """Return a cached instance of the application settings.

    Call ``get_settings.cache_clear()`` in tests to reset.
    """
    return UplinkSettings()
