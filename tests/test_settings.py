"""Tests for environment-driven settings."""

from fleet_uplink.config.settings import UplinkSettings, get_settings


class TestSettings:

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("FLEET_UPLINK_SERVER_URL", raising=False)
        monkeypatch.delenv("FLEET_UPLINK_API_KEY", raising=False)
        settings = UplinkSettings(_env_file=None)
        assert settings.max_cached_snapshots == 10
        assert settings.max_cached_loot == 500
        assert settings.namespace_path == "/plugin"
        assert settings.nickname
        assert not settings.is_configured

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("FLEET_UPLINK_SERVER_URL", "ws://tracker.example:5000/")
        monkeypatch.setenv("FLEET_UPLINK_API_KEY", "abc")
        monkeypatch.setenv("FLEET_UPLINK_MAX_CACHED_LOOT", "42")
        settings = UplinkSettings(_env_file=None)
        assert settings.is_configured
        assert settings.endpoint == "ws://tracker.example:5000/plugin"
        assert settings.max_cached_loot == 42

    def test_get_settings_is_cached(self):
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()
