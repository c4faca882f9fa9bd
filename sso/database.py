"""SQLite-backed persistence for users and applications."""
from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from .deadline import Deadline
from .errors import DeadlineExceeded
from .models import Application, User

DEFAULT_BUSY_TIMEOUT = 5.0

# SQLite stores integers as signed 64-bit values.
_MIN_ROWID = -(2**63)
_MAX_ROWID = 2**63 - 1


class StorageError(RuntimeError):
    """Raised when the credential store fails; carries the failing operation."""

    def __init__(self, op: str, message: str) -> None:
        self.op = op
        super().__init__(f"{op}: {message}")


class UserExistsError(StorageError):
    def __init__(self, op: str) -> None:
        super().__init__(op, "user already exists")


class UserNotFoundError(StorageError):
    def __init__(self, op: str) -> None:
        super().__init__(op, "user not found")


class AppNotFoundError(StorageError):
    def __init__(self, op: str) -> None:
        super().__init__(op, "app not found")


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(value: Optional[str], *, base_dir: Optional[Path] = None) -> Path:
    """Resolve the on-disk path for the credential database."""

    if value:
        candidate = Path(value).expanduser()
        if not candidate.is_absolute() and base_dir is not None:
            candidate = base_dir / candidate
        return candidate.resolve(strict=False)
    root = Path(__file__).resolve().parent.parent / "storage"
    return (root / "sso.db").resolve(strict=False)


class Database:
    """Credential store for user accounts and registered applications.

    Every call opens its own connection, so one instance can be shared by
    concurrent request handlers. ``busy_timeout`` bounds how long a call waits
    for a competing writer before failing with :class:`StorageError`.

    Methods serving requests accept an optional :class:`Deadline`. Once it
    expires the call raises :class:`DeadlineExceeded` and its transaction is
    rolled back rather than committed.
    """

    def __init__(self, path: Path, *, busy_timeout: float = DEFAULT_BUSY_TIMEOUT) -> None:
        _ensure_directory(path)
        self._path = path
        self._busy_timeout = busy_timeout

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def _connect(self, op: str = "storage", deadline: Optional[Deadline] = None) -> Iterator[sqlite3.Connection]:
        timeout = self._busy_timeout
        if deadline is not None:
            deadline.check(op)
            timeout = min(timeout, deadline.remaining())
        conn = sqlite3.connect(self._path, timeout=timeout, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                if deadline is None:
                    yield conn
                else:
                    with deadline.attach(conn):
                        yield conn
                    deadline.check(op)
        finally:
            conn.close()

    @staticmethod
    def _failure(op: str, exc: sqlite3.Error, deadline: Optional[Deadline]) -> Exception:
        if deadline is not None and deadline.expired:
            return DeadlineExceeded(op)
        return StorageError(op, str(exc))

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        op = "storage.initialize"
        try:
            with self._connect(op) as conn:
                conn.executescript(
                    """
                    CREATE TABLE IF NOT EXISTS users (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        email TEXT NOT NULL UNIQUE,
                        pass_hash BLOB NOT NULL,
                        is_admin INTEGER NOT NULL DEFAULT 0
                    );

                    CREATE TABLE IF NOT EXISTS apps (
                        id INTEGER PRIMARY KEY,
                        name TEXT NOT NULL UNIQUE,
                        secret TEXT NOT NULL UNIQUE
                    );
                    """
                )

                columns = {
                    row["name"]
                    for row in conn.execute("PRAGMA table_info(users)").fetchall()
                }
                if "is_admin" not in columns:
                    conn.execute("ALTER TABLE users ADD COLUMN is_admin INTEGER NOT NULL DEFAULT 0")
        except sqlite3.Error as exc:
            raise StorageError(op, str(exc)) from exc

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------
    def save_user(self, email: str, pass_hash: bytes, *, deadline: Optional[Deadline] = None) -> int:
        """Insert a new user and return its identifier."""

        op = "storage.save_user"
        try:
            with self._connect(op, deadline) as conn:
                cursor = conn.execute(
                    "INSERT INTO users (email, pass_hash) VALUES (?, ?)",
                    (email, sqlite3.Binary(pass_hash)),
                )
                user_id = cursor.lastrowid
        except sqlite3.IntegrityError as exc:
            raise UserExistsError(op) from exc
        except sqlite3.Error as exc:
            raise self._failure(op, exc, deadline) from exc

        if user_id is None:
            raise StorageError(op, "insert did not return a row id")
        return int(user_id)

    def user_by_email(self, email: str, *, deadline: Optional[Deadline] = None) -> User:
        op = "storage.user_by_email"
        try:
            with self._connect(op, deadline) as conn:
                row = conn.execute(
                    "SELECT id, email, pass_hash FROM users WHERE email = ?",
                    (email,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise self._failure(op, exc, deadline) from exc

        if row is None:
            raise UserNotFoundError(op)
        return self._row_to_user(row)

    def is_admin(self, user_id: int, *, deadline: Optional[Deadline] = None) -> bool:
        op = "storage.is_admin"
        if not _MIN_ROWID <= user_id <= _MAX_ROWID:
            raise UserNotFoundError(op)
        try:
            with self._connect(op, deadline) as conn:
                row = conn.execute(
                    "SELECT is_admin FROM users WHERE id = ?",
                    (user_id,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise self._failure(op, exc, deadline) from exc

        if row is None:
            raise UserNotFoundError(op)
        return bool(row["is_admin"])

    def set_admin(self, user_id: int, is_admin: bool = True) -> None:
        """Grant or revoke the admin flag; administrative use only."""

        op = "storage.set_admin"
        if not _MIN_ROWID <= user_id <= _MAX_ROWID:
            raise UserNotFoundError(op)
        try:
            with self._connect(op) as conn:
                cursor = conn.execute(
                    "UPDATE users SET is_admin = ? WHERE id = ?",
                    (int(bool(is_admin)), user_id),
                )
                updated = cursor.rowcount
        except sqlite3.Error as exc:
            raise StorageError(op, str(exc)) from exc

        if updated == 0:
            raise UserNotFoundError(op)

    # ------------------------------------------------------------------
    # Application management
    # ------------------------------------------------------------------
    def app(self, app_id: int, *, deadline: Optional[Deadline] = None) -> Application:
        op = "storage.app"
        if not _MIN_ROWID <= app_id <= _MAX_ROWID:
            raise AppNotFoundError(op)
        try:
            with self._connect(op, deadline) as conn:
                row = conn.execute(
                    "SELECT id, name, secret FROM apps WHERE id = ?",
                    (app_id,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise self._failure(op, exc, deadline) from exc

        if row is None:
            raise AppNotFoundError(op)
        return self._row_to_app(row)

    def create_app(self, name: str, secret: str, *, app_id: Optional[int] = None) -> Application:
        """Provision an application; names and secrets must be unique."""

        op = "storage.create_app"
        normalized_name = name.strip()
        if not normalized_name:
            raise ValueError("Application name must not be empty")
        if not secret:
            raise ValueError("Application secret must not be empty")

        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    "INSERT INTO apps (id, name, secret) VALUES (?, ?, ?)",
                    (app_id, normalized_name, secret),
                )
                new_id = cursor.lastrowid
        except sqlite3.IntegrityError as exc:
            raise StorageError(op, f"application '{normalized_name}' already exists") from exc
        except sqlite3.Error as exc:
            raise StorageError(op, str(exc)) from exc

        return Application(id=int(new_id), name=normalized_name, secret=secret.encode("utf-8"))

    def list_apps(self) -> List[Application]:
        op = "storage.list_apps"
        try:
            with self._connect() as conn:
                rows = conn.execute("SELECT id, name, secret FROM apps ORDER BY id").fetchall()
        except sqlite3.Error as exc:
            raise StorageError(op, str(exc)) from exc
        return [self._row_to_app(row) for row in rows]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=int(row["id"]),
            email=str(row["email"]),
            password_hash=bytes(row["pass_hash"]),
        )

    def _row_to_app(self, row: sqlite3.Row) -> Application:
        return Application(
            id=int(row["id"]),
            name=str(row["name"]),
            secret=str(row["secret"]).encode("utf-8"),
        )


__all__ = [
    "AppNotFoundError",
    "Database",
    "StorageError",
    "UserExistsError",
    "UserNotFoundError",
    "resolve_database_path",
]
