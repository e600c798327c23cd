"""Service configuration.

Settings come from, in increasing priority:
    1. built-in defaults
    2. ~/.heartbeat-collector/config.yaml (or --config PATH)
    3. environment variables / CLI flags (resolved by typer)

Example config.yaml:
    public_addr: ":8080"
    admin_addr: "127.0.0.1:8081"
    db_path: /var/lib/heartbeats.db
    freshness_model: explicit
    log_level: INFO
"""

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

from heartbeat_collector.service import FreshnessModel


class ConfigError(Exception):
    """Raised when configuration cannot be loaded or is invalid."""


@dataclass
class Settings:
    """Runtime settings for heartbeat-collector."""
    app_name: str = "heartbeat-collector"
    public_addr: str = ":8080"           # read-only listener
    admin_addr: str = "127.0.0.1:8081"   # write-capable listener
    db_path: str = "/tmp/heartbeats.db"
    freshness_model: FreshnessModel = FreshnessModel.EXPLICIT
    log_level: str = "INFO"

    def __post_init__(self):
        try:
            self.freshness_model = FreshnessModel(self.freshness_model)
        except ValueError:
            choices = ", ".join(m.value for m in FreshnessModel)
            raise ConfigError(
                f"Invalid freshness_model {self.freshness_model!r} (expected one of: {choices})")
        self.log_level = str(self.log_level).upper()
        if self.log_level not in logging.getLevelNamesMapping():
            raise ConfigError(f"Invalid log_level {self.log_level!r}")

    def with_overrides(self, **overrides: Any) -> "Settings":
        """Return a copy with every non-None override applied."""
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values.update({k: v for k, v in overrides.items() if v is not None})
        return Settings(**values)


def get_config_dir() -> Path:
    """Get the heartbeat-collector config directory."""
    return Path.home() / ".heartbeat-collector"


def get_config_path() -> Path:
    """Get the default config file path."""
    return get_config_dir() / "config.yaml"


def load_config(path: Path | None = None) -> dict[str, Any]:
    """Load the raw YAML config. A missing file yields an empty config."""
    config_path = path or get_config_path()
    if not config_path.exists():
        return {}
    try:
        with open(config_path) as f:
            config = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to read config {config_path}: {e}") from e
    if not isinstance(config, dict):
        raise ConfigError(f"Config {config_path} must be a mapping")
    return config


def load_settings(path: Path | None = None) -> Settings:
    """Build Settings from defaults and the YAML config file."""
    config = load_config(path)
    known = {f.name for f in fields(Settings)}
    unknown = sorted(set(config) - known)
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")
    return Settings(**config)


def parse_listen_addr(addr: str) -> tuple[str, int]:
    """Split "host:port" into its parts. An empty host binds all interfaces.

    Examples:
        ":8080"          -> ("0.0.0.0", 8080)
        "127.0.0.1:8081" -> ("127.0.0.1", 8081)
    """
    host, sep, port = str(addr).rpartition(":")
    if not sep:
        raise ConfigError(f"Invalid listen address {addr!r}: expected host:port")
    try:
        port_num = int(port)
    except ValueError:
        raise ConfigError(f"Invalid port in listen address {addr!r}")
    if not 0 < port_num < 65536:
        raise ConfigError(f"Port out of range in listen address {addr!r}")
    host = host.strip("[]") or "0.0.0.0"
    return host, port_num
