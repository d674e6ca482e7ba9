"""
Configuration management for the Feed Push Bridge.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Push API credentials have no defaults and are validated at startup
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep boolean parsing consistent (only "true" enables a flag)
    - Document all new settings in README.md
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


def _env_flag(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


@dataclass(frozen=True)
class ListenerConfig:
    """HTTP listener configuration.

    Attributes:
        host: Address to bind both listeners
        port: Port of the feed/groups listener (/xmlfeed, /xmlgroups)
        auth_port: Port of the mock authentication listener (/accounts/ClientLogin)
    """

    host: str = "0.0.0.0"
    port: int = 19900
    auth_port: int = 8000

    @classmethod
    def from_env(cls) -> ListenerConfig:
        """Load configuration from environment variables."""
        return cls(
            host=os.getenv("LISTEN_HOST", "0.0.0.0"),
            port=int(os.getenv("LISTEN_PORT", "19900")),
            auth_port=int(os.getenv("AUTH_PORT", "8000")),
        )


@dataclass(frozen=True)
class PushApiConfig:
    """Push API configuration.

    Attributes:
        push_endpoint: Base URL of the Push API
        organization_id: Target organization
        api_key: API key with push privileges
        provider_id: Security identity provider receiving the identities
        default_source_id: Source receiving documents of unmapped datasources
        source_map: Datasource name to source id overrides
        timeout_seconds: Timeout of a single Push API call
        delete_queue_delay_minutes: Delay passed to delete-older-than calls
    """

    push_endpoint: str = "https://api.cloud.coveo.com/push/v1"
    organization_id: str = ""
    api_key: str = ""
    provider_id: str = ""
    default_source_id: str = ""
    source_map: dict[str, str] = field(default_factory=dict)
    timeout_seconds: float = 120.0
    delete_queue_delay_minutes: int = 5

    @classmethod
    def from_env(cls) -> PushApiConfig:
        """Load configuration from environment variables.

        Raises:
            ValueError: If PUSH_SOURCE_MAP is not a JSON object of strings.
        """
        raw_map = os.getenv("PUSH_SOURCE_MAP", "")
        source_map: dict[str, str] = {}
        if raw_map:
            try:
                parsed = json.loads(raw_map)
            except json.JSONDecodeError as e:
                raise ValueError(f"PUSH_SOURCE_MAP is not valid JSON: {e}")
            if not isinstance(parsed, dict):
                raise ValueError("PUSH_SOURCE_MAP must be a JSON object")
            source_map = {str(k): str(v) for k, v in parsed.items()}

        return cls(
            push_endpoint=os.getenv("PUSH_API_ENDPOINT", "https://api.cloud.coveo.com/push/v1"),
            organization_id=os.getenv("ORGANIZATION_ID", ""),
            api_key=os.getenv("API_KEY", ""),
            provider_id=os.getenv("PROVIDER_ID", ""),
            default_source_id=os.getenv("PUSH_SOURCE_ID", ""),
            source_map=source_map,
            timeout_seconds=float(os.getenv("PUSH_TIMEOUT_SECONDS", "120")),
            delete_queue_delay_minutes=int(os.getenv("DELETE_QUEUE_DELAY_MINUTES", "5")),
        )

    def source_for(self, datasource: str | None) -> str:
        """Resolve the push source for a feed datasource."""
        if datasource and datasource in self.source_map:
            return self.source_map[datasource]
        return self.default_source_id

    def missing(self) -> list[str]:
        """Names of required settings that are empty."""
        required = {
            "PUSH_API_ENDPOINT": self.push_endpoint,
            "ORGANIZATION_ID": self.organization_id,
            "API_KEY": self.api_key,
            "PROVIDER_ID": self.provider_id,
            "PUSH_SOURCE_ID": self.default_source_id,
        }
        return [name for name, value in required.items() if not value]


@dataclass(frozen=True)
class FeedConfig:
    """Feed handling configuration.

    Attributes:
        push_records_without_acl: Push records that have no ACL immediately (anonymous)
        require_display_url: Skip records that have no display URL
        delete_on_invalid_url: Crawled URLs answering non-200 become DELETE records
    """

    push_records_without_acl: bool = False
    require_display_url: bool = False
    delete_on_invalid_url: bool = True

    @classmethod
    def from_env(cls) -> FeedConfig:
        """Load configuration from environment variables."""
        return cls(
            push_records_without_acl=_env_flag("PUSH_RECORDS_WITHOUT_ACL", False),
            require_display_url=_env_flag("REQUIRE_DISPLAY_URL", False),
            delete_on_invalid_url=_env_flag("DELETE_ON_INVALID_URL", True),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class BridgeConfig:
    """Complete bridge configuration.

    Attributes:
        listener: HTTP listener configuration
        push: Push API configuration
        feed: Feed handling configuration
        observability: Logging configuration
    """

    listener: ListenerConfig = field(default_factory=ListenerConfig)
    push: PushApiConfig = field(default_factory=PushApiConfig)
    feed: FeedConfig = field(default_factory=FeedConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> BridgeConfig:
        """Load complete configuration from environment variables.

        Returns:
            BridgeConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            listener=ListenerConfig.from_env(),
            push=PushApiConfig.from_env(),
            feed=FeedConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        missing = self.push.missing()
        if missing:
            raise ValueError(f"Missing required settings: {', '.join(missing)}")

        if self.listener.port == self.listener.auth_port:
            raise ValueError("LISTEN_PORT and AUTH_PORT must differ")

        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        if self.feed.push_records_without_acl:
            logger.warning(
                "PUSH_RECORDS_WITHOUT_ACL is enabled: records without ACL are pushed "
                "as anonymous-allowed documents."
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Bridge configuration loaded",
            extra={
                "listen": f"{self.listener.host}:{self.listener.port}",
                "auth_listen": f"{self.listener.host}:{self.listener.auth_port}",
                "push_endpoint": self.push.push_endpoint,
                "organization_id": self.push.organization_id,
                "provider_id": self.push.provider_id,
                "default_source_id": self.push.default_source_id,
                "mapped_datasources": sorted(self.push.source_map),
                "push_records_without_acl": self.feed.push_records_without_acl,
                "require_display_url": self.feed.require_display_url,
                "delete_on_invalid_url": self.feed.delete_on_invalid_url,
                "log_level": self.observability.log_level,
            },
        )
