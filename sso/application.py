"""Application factory wiring configuration, storage and the RPC transport."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI

from .api import create_app as create_rpc_app
from .auth import AuthService
from .config import Config
from .database import Database
from .passwords import PasswordHasher
from .tokens import JWTIssuer


def build_service(
    config: Config,
    *,
    database: Optional[Database] = None,
    logger: Optional[logging.Logger] = None,
) -> AuthService:
    """Create the authentication service for ``config``."""

    if database is None:
        database = Database(config.storage_path)
        database.initialize()

    return AuthService(
        user_saver=database,
        user_provider=database,
        app_provider=database,
        hasher=PasswordHasher(config.password_rounds),
        issuer=JWTIssuer(),
        token_ttl=config.token_ttl,
        logger=logger or logging.getLogger("sso.auth"),
    )


def create_application(
    config: Config,
    *,
    database: Optional[Database] = None,
    logger: Optional[logging.Logger] = None,
) -> FastAPI:
    """Create the ASGI application serving the Auth RPC methods."""

    if database is None:
        database = Database(config.storage_path)
        database.initialize()

    service = build_service(config, database=database, logger=logger)
    app = create_rpc_app(service=service, timeout=config.rpc.timeout)
    app.state.database = database
    app.state.config = config
    return app


__all__ = ["build_service", "create_application"]
