"""Server configuration: defaults, JSON config file, and environment overrides.

Precedence, lowest to highest: :func:`default_config`, a JSON config file,
``KOSYNC_*`` environment variables, then explicit CLI flags (applied by the
caller).
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import TypedDict

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

ENV_VARS: dict[str, str] = {
    "db_path": "KOSYNC_DB_PATH",
    "host": "KOSYNC_HOST",
    "port": "KOSYNC_PORT",
    "lock_timeout": "KOSYNC_LOCK_TIMEOUT",
    "log_level": "KOSYNC_LOG_LEVEL",
}


class ConfigError(Exception):
    """Raised when a configuration value is missing or malformed."""


class ServerConfig(TypedDict):
    db_path: str
    host: str
    port: int
    lock_timeout: float
    log_level: str


def default_config() -> ServerConfig:
    """Return the default server configuration."""
    return {
        "db_path": "kosync.db",
        "host": "0.0.0.0",
        "port": 7200,
        "lock_timeout": 10.0,
        "log_level": "INFO",
    }


def serialize_config(config: ServerConfig | dict[str, object]) -> str:
    """Serialize a config dict to the canonical JSON format."""
    return json.dumps(config, sort_keys=True, indent=2) + "\n"


def _coerce(field: str, value: object) -> object:
    try:
        if field == "port":
            port = int(value)  # type: ignore[arg-type]
            if not 0 <= port <= 65535:
                raise ValueError(f"out of range: {port}")
            return port
        if field == "lock_timeout":
            timeout = float(value)  # type: ignore[arg-type]
            if timeout < 0:
                raise ValueError(f"must not be negative: {timeout}")
            return timeout
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value for '{field}': {exc}") from None
    if field == "log_level":
        level = str(value).upper()
        if level not in VALID_LOG_LEVELS:
            raise ConfigError(
                f"Invalid value for 'log_level': '{value}'. "
                f"Expected one of: {', '.join(VALID_LOG_LEVELS)}"
            )
        return level
    if not isinstance(value, str) or not value:
        raise ConfigError(f"Invalid value for '{field}': expected a non-empty string")
    return value


def apply_overrides(config: ServerConfig, overrides: Mapping[str, object]) -> ServerConfig:
    """Return a copy of *config* with validated, non-``None`` overrides applied."""
    merged = dict(config)
    for field, value in overrides.items():
        if value is None:
            continue
        if field not in merged:
            raise ConfigError(f"Unknown config key: '{field}'")
        merged[field] = _coerce(field, value)
    return merged  # type: ignore[return-value]


def load_config(
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> ServerConfig:
    """Build the effective config from defaults, an optional file, and the environment."""
    config = default_config()

    if config_path is not None:
        try:
            raw = json.loads(config_path.read_text())
        except OSError as exc:
            raise ConfigError(f"Cannot read config file {config_path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Invalid JSON in config file {config_path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigError(f"Config file {config_path} must contain a JSON object")
        config = apply_overrides(config, raw)

    env = os.environ if environ is None else environ
    from_env = {field: env[var] for field, var in ENV_VARS.items() if env.get(var)}
    return apply_overrides(config, from_env)
