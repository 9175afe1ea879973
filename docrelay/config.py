"""Configuration loading for docrelay."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .sync.pinger import DEFAULT_PING_INTERVAL
from .sync.store import DEFAULT_SUMMARY_PATH


@dataclass
class NodeConfig:
    name: str = "docrelay"


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class StorageConfig:
    """Where the document snapshot lives."""

    snapshot_path: str = "manifest.json"


@dataclass
class SessionConfig:
    """Per-connection protocol settings."""

    ping_interval_seconds: float = DEFAULT_PING_INTERVAL
    debug_echo: bool = True
    summary_path: str = DEFAULT_SUMMARY_PATH


@dataclass
class ClientConfig:
    """Client page served at the root URL."""

    page_path: str = "client.html"


@dataclass
class Config:
    node: NodeConfig = field(default_factory=NodeConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    client: ClientConfig = field(default_factory=ClientConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with DOCRELAY_ prefix."""
    return os.environ.get(f"DOCRELAY_{key}", default)


def _parse_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    if name := _get_env("NODE_NAME"):
        config.node.name = name

    # Plain PORT is honored for hosting platforms; the prefixed one wins
    if port := os.environ.get("PORT"):
        config.server.port = int(port)
    if port := _get_env("PORT"):
        config.server.port = int(port)
    if host := _get_env("HOST"):
        config.server.host = host

    if snapshot_path := _get_env("SNAPSHOT_PATH"):
        config.storage.snapshot_path = snapshot_path

    if ping_interval := _get_env("PING_INTERVAL"):
        config.session.ping_interval_seconds = float(ping_interval)
    if debug_echo := _get_env("DEBUG_ECHO"):
        config.session.debug_echo = _parse_bool(debug_echo)
    if summary_path := _get_env("SUMMARY_PATH"):
        config.session.summary_path = summary_path

    if page_path := _get_env("CLIENT_PAGE"):
        config.client.page_path = page_path

    return config


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

            if "node" in data:
                config.node = NodeConfig(
                    name=data["node"].get("name", config.node.name)
                )

            if "server" in data:
                server_data = data["server"]
                config.server = ServerConfig(
                    host=server_data.get("host", config.server.host),
                    port=int(server_data.get("port", config.server.port)),
                )

            if "storage" in data:
                config.storage = StorageConfig(
                    snapshot_path=data["storage"].get(
                        "snapshot_path", config.storage.snapshot_path
                    )
                )

            if "session" in data:
                session_data = data["session"]
                config.session = SessionConfig(
                    ping_interval_seconds=float(
                        session_data.get(
                            "ping_interval_seconds", config.session.ping_interval_seconds
                        )
                    ),
                    debug_echo=session_data.get("debug_echo", config.session.debug_echo),
                    summary_path=session_data.get(
                        "summary_path", config.session.summary_path
                    ),
                )

            if "client" in data:
                config.client = ClientConfig(
                    page_path=data["client"].get("page_path", config.client.page_path)
                )

    return _apply_env_overrides(config)
