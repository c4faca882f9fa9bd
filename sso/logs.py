"""Logging configuration for the SSO service."""

from __future__ import annotations

import logging
import sys

from .errors import ConfigError

_FORMATS = {
    "local": ("%(asctime)s [%(levelname)s] %(name)s: %(message)s", logging.DEBUG),
    "dev": ("time=%(asctime)s level=%(levelname)s logger=%(name)s msg=%(message)s", logging.DEBUG),
    "prod": ("time=%(asctime)s level=%(levelname)s logger=%(name)s msg=%(message)s", logging.INFO),
}


def setup_logging(env: str) -> logging.Logger:
    """Configure the root logger for ``env`` and return the service logger."""

    try:
        fmt, level = _FORMATS[env]
    except KeyError as exc:
        raise ConfigError(f"Unknown env '{env}'") from exc

    logging.basicConfig(
        level=level,
        format=fmt,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    return logging.getLogger("sso")


__all__ = ["setup_logging"]
