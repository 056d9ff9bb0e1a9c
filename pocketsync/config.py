"""Configuration loading for pocketsync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class ServerConfig:
    url: str = "http://127.0.0.1:8090"
    timeout: float = 30.0
    page_size: int = 500  # Batch size for full-list queries


@dataclass
class RealtimeConfig:
    """Configuration for the MQTT change feed."""

    enabled: bool = True
    broker: str = "localhost"
    port: int = 1883
    topic_prefix: str = "pocketsync"
    username: str | None = None
    password: str | None = None


@dataclass
class SyncConfig:
    """Configuration for record synchronizers."""

    subscribe_policy: str = "non_empty"  # "non_empty" or "settled"
    retry_max_attempts: int = 3
    retry_backoff_seconds: float = 1.0
    retry_max_backoff_seconds: float = 30.0


@dataclass
class AuthConfig:
    collection: str = "users"
    identity: str | None = None
    password: str | None = None
    validation_interval_seconds: int = 300  # 5 minutes


@dataclass
class DashboardConfig:
    collection: str = "users"
    filter: str = ""
    sort: str = "-created"
    expand: str = ""
    host: str = "127.0.0.1"
    port: int = 8080


@dataclass
class Config:
    server: ServerConfig = field(default_factory=ServerConfig)
    realtime: RealtimeConfig = field(default_factory=RealtimeConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with POCKETSYNC_ prefix."""
    return os.environ.get(f"POCKETSYNC_{key}", default)


def _is_true(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Server overrides
    if url := _get_env("SERVER_URL"):
        config.server.url = url
    if timeout := _get_env("SERVER_TIMEOUT"):
        config.server.timeout = float(timeout)
    if page_size := _get_env("SERVER_PAGE_SIZE"):
        config.server.page_size = int(page_size)

    # Realtime overrides
    if enabled := _get_env("REALTIME_ENABLED"):
        config.realtime.enabled = _is_true(enabled)
    if broker := _get_env("REALTIME_BROKER"):
        config.realtime.broker = broker
    if port := _get_env("REALTIME_PORT"):
        config.realtime.port = int(port)
    if prefix := _get_env("REALTIME_TOPIC_PREFIX"):
        config.realtime.topic_prefix = prefix
    if username := _get_env("REALTIME_USERNAME"):
        config.realtime.username = username
    if password := _get_env("REALTIME_PASSWORD"):
        config.realtime.password = password

    # Sync overrides
    if policy := _get_env("SYNC_SUBSCRIBE_POLICY"):
        config.sync.subscribe_policy = policy
    if attempts := _get_env("SYNC_RETRY_MAX_ATTEMPTS"):
        config.sync.retry_max_attempts = int(attempts)
    if backoff := _get_env("SYNC_RETRY_BACKOFF_SECONDS"):
        config.sync.retry_backoff_seconds = float(backoff)
    if max_backoff := _get_env("SYNC_RETRY_MAX_BACKOFF_SECONDS"):
        config.sync.retry_max_backoff_seconds = float(max_backoff)

    # Auth overrides
    if identity := _get_env("AUTH_IDENTITY"):
        config.auth.identity = identity
    if password := _get_env("AUTH_PASSWORD"):
        config.auth.password = password
    if interval := _get_env("AUTH_VALIDATION_INTERVAL_SECONDS"):
        config.auth.validation_interval_seconds = int(interval)

    return config


def _section(data: dict, key: str) -> dict:
    return data.get(key) or {}


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            if "server" in data:
                server_data = _section(data, "server")
                config.server = ServerConfig(
                    url=server_data.get("url", config.server.url),
                    timeout=server_data.get("timeout", config.server.timeout),
                    page_size=server_data.get("page_size", config.server.page_size),
                )

            if "realtime" in data:
                rt_data = _section(data, "realtime")
                config.realtime = RealtimeConfig(
                    enabled=rt_data.get("enabled", config.realtime.enabled),
                    broker=rt_data.get("broker", config.realtime.broker),
                    port=rt_data.get("port", config.realtime.port),
                    topic_prefix=rt_data.get(
                        "topic_prefix", config.realtime.topic_prefix
                    ),
                    username=rt_data.get("username"),
                    password=rt_data.get("password"),
                )

            if "sync" in data:
                sync_data = _section(data, "sync")
                config.sync = SyncConfig(
                    subscribe_policy=sync_data.get(
                        "subscribe_policy", config.sync.subscribe_policy
                    ),
                    retry_max_attempts=sync_data.get(
                        "retry_max_attempts", config.sync.retry_max_attempts
                    ),
                    retry_backoff_seconds=sync_data.get(
                        "retry_backoff_seconds", config.sync.retry_backoff_seconds
                    ),
                    retry_max_backoff_seconds=sync_data.get(
                        "retry_max_backoff_seconds",
                        config.sync.retry_max_backoff_seconds,
                    ),
                )

            if "auth" in data:
                auth_data = _section(data, "auth")
                config.auth = AuthConfig(
                    collection=auth_data.get("collection", config.auth.collection),
                    identity=auth_data.get("identity"),
                    password=auth_data.get("password"),
                    validation_interval_seconds=auth_data.get(
                        "validation_interval_seconds",
                        config.auth.validation_interval_seconds,
                    ),
                )

            if "dashboard" in data:
                dash_data = _section(data, "dashboard")
                config.dashboard = DashboardConfig(
                    collection=dash_data.get("collection", config.dashboard.collection),
                    filter=dash_data.get("filter", config.dashboard.filter),
                    sort=dash_data.get("sort", config.dashboard.sort),
                    expand=dash_data.get("expand", config.dashboard.expand),
                    host=dash_data.get("host", config.dashboard.host),
                    port=dash_data.get("port", config.dashboard.port),
                )

    # Apply environment variable overrides
    config = _apply_env_overrides(config)

    return config
