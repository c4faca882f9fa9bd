"""Configuration loading for the SSO service."""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Dict, Optional

import yaml

from .database import resolve_database_path
from .errors import ConfigError

ENVIRONMENTS = ("local", "dev", "prod")
CONFIG_PATH_ENV = "CONFIG_PATH"

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: object) -> timedelta:
    """Parse ``1h30m``/``45s``/``250ms`` style durations; bare numbers are seconds."""

    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ConfigError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return timedelta(seconds=float(value))

    text = str(value).strip().replace(" ", "")
    if not text:
        raise ConfigError("Duration must not be empty")

    total = 0.0
    position = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        position = match.end()
    if position != len(text):
        raise ConfigError(f"Invalid duration: {value!r}")
    return timedelta(seconds=total)


@dataclass(frozen=True)
class RPCConfig:
    """Listener settings for the RPC transport."""

    host: str = "0.0.0.0"
    port: int = 44044
    timeout: timedelta = timedelta(seconds=10)

    @staticmethod
    def from_dict(data: Dict[str, object]) -> "RPCConfig":
        port = int(data.get("port", 44044))
        if not 0 < port < 65536:
            raise ConfigError(f"rpc.port out of range: {port}")
        timeout = parse_duration(data.get("timeout", "10s"))
        if timeout <= timedelta(0):
            raise ConfigError("rpc.timeout must be positive")
        return RPCConfig(host=str(data.get("host", "0.0.0.0")), port=port, timeout=timeout)


@dataclass(frozen=True)
class Config:
    """Top-level service configuration."""

    storage_path: Path
    token_ttl: timedelta
    env: str = "local"
    password_rounds: Optional[int] = None
    rpc: RPCConfig = field(default_factory=RPCConfig)

    @staticmethod
    def from_dict(data: Dict[str, object], base_path: Path | None = None) -> "Config":
        """Create a :class:`Config` from raw dictionary data."""
        required_fields = {"storage_path", "token_ttl"}
        missing = required_fields - data.keys()
        if missing:
            raise ConfigError(f"Missing required configuration fields: {', '.join(sorted(missing))}")

        env = str(data.get("env", "local"))
        if env not in ENVIRONMENTS:
            raise ConfigError(f"Unknown env '{env}'; expected one of {', '.join(ENVIRONMENTS)}")

        token_ttl = parse_duration(data["token_ttl"])
        if token_ttl <= timedelta(0):
            raise ConfigError("token_ttl must be positive")

        rounds = data.get("password_rounds")
        rpc_raw = data.get("rpc") or {}
        if not isinstance(rpc_raw, dict):
            raise ConfigError("'rpc' must be a mapping")

        return Config(
            env=env,
            storage_path=resolve_database_path(str(data["storage_path"]), base_dir=base_path),
            token_ttl=token_ttl,
            password_rounds=int(rounds) if rounds is not None else None,
            rpc=RPCConfig.from_dict(rpc_raw),
        )


def load_config(config_path: Path) -> Config:
    """Load the service configuration from a YAML file."""
    if not config_path.is_file():
        raise ConfigError(f"Config file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as handle:
        try:
            raw = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Failed to parse config file {config_path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError("Configuration file must contain a mapping")
    return Config.from_dict(raw, base_path=config_path.parent)


def resolve_config_path(cli_value: Optional[str]) -> Path:
    """Resolve the config path from the CLI flag, falling back to ``CONFIG_PATH``."""
    value = cli_value or os.getenv(CONFIG_PATH_ENV)
    if not value:
        raise ConfigError(f"Config path is not set; pass --config or set {CONFIG_PATH_ENV}")
    return Path(value).expanduser().resolve(strict=False)


__all__ = [
    "CONFIG_PATH_ENV",
    "Config",
    "RPCConfig",
    "load_config",
    "parse_duration",
    "resolve_config_path",
]
