"""
Unit tests for environment configuration.
"""

import logging

import pytest

from bridge.feedpush_server.config import (
    BridgeConfig,
    FeedConfig,
    ListenerConfig,
    PushApiConfig,
)

REQUIRED = {
    "ORGANIZATION_ID": "org",
    "API_KEY": "key",
    "PROVIDER_ID": "provider",
    "PUSH_SOURCE_ID": "source",
}


@pytest.fixture
def env(monkeypatch):
    """Environment with every required setting."""
    for name in (
        "LISTEN_HOST",
        "LISTEN_PORT",
        "AUTH_PORT",
        "PUSH_SOURCE_MAP",
        "PUSH_RECORDS_WITHOUT_ACL",
        "REQUIRE_DISPLAY_URL",
        "DELETE_ON_INVALID_URL",
        "LOG_FORMAT",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    for name, value in REQUIRED.items():
        monkeypatch.setenv(name, value)
    return monkeypatch


class TestDefaults:
    """Defaults without environment."""

    def test_listener_defaults(self, env):
        config = ListenerConfig.from_env()

        assert config.host == "0.0.0.0"
        assert config.port == 19900
        assert config.auth_port == 8000

    def test_feed_flags(self, env):
        config = FeedConfig.from_env()

        assert not config.push_records_without_acl
        assert not config.require_display_url
        assert config.delete_on_invalid_url

    def test_flags_need_exact_true(self, env):
        """Only "true" enables a flag."""
        env.setenv("PUSH_RECORDS_WITHOUT_ACL", "TRUE")
        env.setenv("REQUIRE_DISPLAY_URL", "yes")
        env.setenv("DELETE_ON_INVALID_URL", "false")

        config = FeedConfig.from_env()

        assert config.push_records_without_acl
        assert not config.require_display_url
        assert not config.delete_on_invalid_url


class TestPushApiConfig:
    """Source mapping and required settings."""

    def test_source_map(self, env):
        env.setenv("PUSH_SOURCE_MAP", '{"fileshare": "src-fs", "wiki": "src-wiki"}')

        config = PushApiConfig.from_env()

        assert config.source_for("fileshare") == "src-fs"
        assert config.source_for("intranet") == "source"
        assert config.source_for(None) == "source"
        assert config.source_for("") == "source"

    def test_invalid_source_map(self, env):
        env.setenv("PUSH_SOURCE_MAP", "fileshare=src-fs")

        with pytest.raises(ValueError, match="not valid JSON"):
            PushApiConfig.from_env()

    def test_source_map_not_object(self, env):
        env.setenv("PUSH_SOURCE_MAP", '["src-fs"]')

        with pytest.raises(ValueError, match="JSON object"):
            PushApiConfig.from_env()

    def test_missing(self):
        config = PushApiConfig(organization_id="org", api_key="key")

        assert config.missing() == ["PROVIDER_ID", "PUSH_SOURCE_ID"]

    def test_only_push_endpoint_is_read(self, env):
        """The Push API is the only remote endpoint the bridge calls."""
        env.setenv("PUSH_API_ENDPOINT", "https://push.example.com/v1")
        env.setenv("PLATFORM_API_ENDPOINT", "")

        config = PushApiConfig.from_env()

        assert config.push_endpoint == "https://push.example.com/v1"
        assert not hasattr(config, "platform_endpoint")
        assert config.missing() == []


class TestBridgeConfig:
    """Complete configuration."""

    def test_from_env(self, env):
        env.setenv("LISTEN_PORT", "20000")

        config = BridgeConfig.from_env()

        assert config.listener.port == 20000
        assert config.push.organization_id == "org"
        assert config.observability.log_format == "json"

    def test_missing_required(self, env):
        env.delenv("API_KEY")

        with pytest.raises(ValueError, match="API_KEY"):
            BridgeConfig.from_env()

    def test_port_conflict(self, env):
        env.setenv("LISTEN_PORT", "8000")

        with pytest.raises(ValueError, match="must differ"):
            BridgeConfig.from_env()

    def test_invalid_log_format(self, env):
        env.setenv("LOG_FORMAT", "xml")

        with pytest.raises(ValueError, match="LOG_FORMAT"):
            BridgeConfig.from_env()

    def test_secret_not_logged(self, env, caplog):
        config = BridgeConfig.from_env()

        with caplog.at_level(logging.INFO):
            config.log_config()

        assert len(caplog.records) == 1
        assert all("api_key" not in r.__dict__ for r in caplog.records)
