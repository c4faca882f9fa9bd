import argparse
import os
import secrets
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sso.database import Database, StorageError, resolve_database_path


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Provision an application allowed to request SSO tokens")
    parser.add_argument("name", help="Unique display name for the application")
    parser.add_argument("--id", dest="app_id", type=int, default=None, help="Explicit application id")
    parser.add_argument(
        "--secret",
        default=None,
        help="Signing secret shared with the application (generated when omitted)",
    )
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path to the SQLite database (defaults to SSO_DB_PATH or storage/sso.db)",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    secret = args.secret or secrets.token_urlsafe(32)

    db_env = args.db_path or os.getenv("SSO_DB_PATH")
    db_path = resolve_database_path(db_env)

    database = Database(db_path)
    database.initialize()

    try:
        application = database.create_app(args.name, secret, app_id=args.app_id)
    except (ValueError, StorageError) as exc:  # duplicates, etc.
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Created application #{application.id}: {application.name}")
    if not args.secret:
        print(f"Signing secret: {secret}")
        print("Store this secret with the application; it is required to verify issued tokens.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
