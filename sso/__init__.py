"""Single-sign-on authentication service."""

from __future__ import annotations

from typing import Any

from .auth import AuthService
from .database import Database, resolve_database_path
from .errors import AuthError, ErrorKind


def create_application(*args: Any, **kwargs: Any):
    """Factory function that returns the RPC application."""

    from .application import create_application as _create_application

    return _create_application(*args, **kwargs)


__all__ = [
    "AuthError",
    "AuthService",
    "Database",
    "ErrorKind",
    "create_application",
    "resolve_database_path",
]
