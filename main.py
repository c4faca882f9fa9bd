"""Command-line interface for the SSO authentication service."""

from __future__ import annotations
import argparse
import logging
import sys
from typing import Sequence

from sso.config import Config, load_config, resolve_config_path
from sso.database import Database, StorageError, UserNotFoundError
from sso.errors import ConfigError
from sso.logs import setup_logging

logger = logging.getLogger("sso.main")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        default=None,
        help="Path to the YAML config file (default: $CONFIG_PATH)",
    )

    parser = argparse.ArgumentParser(description="SSO authentication service")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    serve_parser = subparsers.add_parser("serve", parents=[common], help="Start the RPC service")
    serve_parser.add_argument("--host", default=None, help="Override the bind address")
    serve_parser.add_argument("--port", type=int, default=None, help="Override the listen port")

    subparsers.add_parser(
        "migrate", parents=[common], help="Create or upgrade the credential database schema"
    )

    create_app_parser = subparsers.add_parser(
        "create-app", parents=[common], help="Provision a client application"
    )
    create_app_parser.add_argument("name", help="Unique display name for the application")
    create_app_parser.add_argument("secret", help="Signing secret shared with the application")
    create_app_parser.add_argument("--id", dest="app_id", type=int, default=None, help="Explicit application id")

    admin_parser = subparsers.add_parser("set-admin", parents=[common], help="Grant or revoke the admin flag")
    admin_parser.add_argument("user_id", type=int, help="Identifier of the user")
    admin_parser.add_argument("--revoke", action="store_true", help="Clear the flag instead of setting it")

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "migrate", "create-app", "set-admin"}

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in known_commands:
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _open_database(config: Config) -> Database:
    database = Database(config.storage_path)
    database.initialize()
    logger.info("Database ready at %s", config.storage_path)
    return database


def _serve(config: Config, *, host: str | None, port: int | None) -> None:
    from sso.application import create_application
    import uvicorn

    bind_host = host or config.rpc.host
    bind_port = port or config.rpc.port
    logger.info("Starting SSO service (env=%s) on %s:%s", config.env, bind_host, bind_port)

    app = create_application(config, database=_open_database(config))
    uvicorn.run(
        app,
        host=bind_host,
        port=bind_port,
        log_level="debug" if config.env != "prod" else "info",
    )


def _create_app(database: Database, name: str, secret: str, app_id: int | None) -> int:
    try:
        application = database.create_app(name, secret, app_id=app_id)
    except (ValueError, StorageError) as exc:
        print(f"Failed to create application: {exc}", file=sys.stderr)
        return 1
    print(f"Created application #{application.id}: {application.name}")
    return 0


def _set_admin(database: Database, user_id: int, *, revoke: bool) -> int:
    try:
        database.set_admin(user_id, not revoke)
    except UserNotFoundError:
        print(f"User #{user_id} does not exist.", file=sys.stderr)
        return 1
    except StorageError as exc:
        print(f"Failed to update admin flag: {exc}", file=sys.stderr)
        return 1
    state = "revoked from" if revoke else "granted to"
    print(f"Admin flag {state} user #{user_id}.")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    args = _parse_args(argv)

    try:
        config = load_config(resolve_config_path(args.config))
        setup_logging(config.env)
    except ConfigError as exc:
        raise SystemExit(f"Configuration error: {exc}") from exc

    if args.command == "serve":
        _serve(config, host=args.host, port=args.port)
        return 0

    database = _open_database(config)
    if args.command == "migrate":
        print("Migrations applied.")
        return 0
    if args.command == "create-app":
        return _create_app(database, args.name, args.secret, args.app_id)
    if args.command == "set-admin":
        return _set_admin(database, args.user_id, revoke=args.revoke)
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
