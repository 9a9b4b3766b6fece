"""
Broker configuration.

Settings come from an optional YAML file, then environment variables, then
whatever the CLI passes explicitly. Example file:

    url: ws://localhost:8080/ws
    host: 0.0.0.0
    port: 8080
    roster_interval: 2
    log_level: DEBUG
    log_file: logs/broker.log
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from broker_shared.log import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("broker.yaml")

# Environment variable -> config field
ENV_OVERRIDES: Dict[str, str] = {
    "BROKER_URL": "url",
    "BROKER_ORIGIN": "origin",
    "BROKER_HOST": "host",
    "BROKER_PORT": "port",
    "BROKER_ROSTER_INTERVAL": "roster_interval",
    "BROKER_LOG_LEVEL": "log_level",
    "BROKER_LOG_FILE": "log_file",
}


class ConfigError(ValueError):
    """Raised when a configuration file or value cannot be used."""
    pass


@dataclass(frozen=True)
class BrokerConfig:
    url: Optional[str] = None         # explicit client transport URL
    origin: Optional[str] = None      # page origin the URL is derived from when url is unset
    host: str = "127.0.0.1"           # server bind address
    port: int = 8080                  # server bind port
    roster_interval: float = 2.0      # seconds between [connections] broadcasts
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def merged(self, **overrides: Any) -> 'BrokerConfig':
        """Return a copy with every non-None override applied"""
        values = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **_coerce(values)) if values else self


def _coerce(values: Dict[str, Any]) -> Dict[str, Any]:
    """Convert raw values (YAML scalars, env strings) to the field types."""
    result: Dict[str, Any] = {}
    for key, value in values.items():
        try:
            if key == "port":
                result[key] = int(value)
            elif key == "roster_interval":
                result[key] = float(value)
            else:
                result[key] = str(value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid value for '{key}': {value!r}") from e
    if "port" in result and not 0 <= result["port"] <= 65535:
        raise ConfigError(f"Port out of range: {result['port']}")
    if "roster_interval" in result and result["roster_interval"] <= 0:
        raise ConfigError("roster_interval must be positive")
    return result


def _read_yaml(path: Path) -> Dict[str, Any]:
    """Load a YAML mapping from ``path``; unknown keys are dropped with a warning."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Error reading {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping, got {type(data).__name__}")

    known = {f.name for f in fields(BrokerConfig)}
    for key in set(data) - known:
        logger.warning("Ignoring unknown config key %r in %s", key, path)
    return {k: v for k, v in data.items() if k in known}


def load_config(path: Optional[Path] = None, environ: Optional[Dict[str, str]] = None) -> BrokerConfig:
    """
    Build the effective configuration.

    Args:
        path: YAML file to read. When omitted, ./broker.yaml is used if present.
        environ: Environment mapping (defaults to os.environ)

    Returns:
        BrokerConfig with file values and environment overrides applied
    """
    environ = os.environ if environ is None else environ
    config = BrokerConfig()

    if path is not None and not Path(path).exists():
        raise ConfigError(f"Config file not found: {path}")
    source = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    if source.exists():
        config = config.merged(**_read_yaml(source))
        logger.debug("Loaded config from %s", source)

    env_values = {field: environ[var] for var, field in ENV_OVERRIDES.items() if environ.get(var)}
    return config.merged(**env_values)
