"""Fleet Uplink -- configuration."""

from fleet_uplink.config.settings import UplinkSettings, get_settings

__all__ = [
    "UplinkSettings",
    "get_settings",
]
