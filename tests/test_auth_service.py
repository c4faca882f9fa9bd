"""Behavioural tests for the authentication service."""

from __future__ import annotations

import threading
import time
from datetime import timedelta
from pathlib import Path
from typing import List

import pytest

from sso.auth import AuthService
from sso.database import Database, StorageError, UserNotFoundError
from sso.deadline import Deadline
from sso.errors import AuthError, DeadlineExceeded, ErrorKind
from sso.models import Application, User
from sso.passwords import PasswordHasher
from sso.tokens import JWTIssuer, TokenError, decode_token

APP_ID = 1
APP_SECRET = "test-secret"
TOKEN_TTL = timedelta(hours=1)
EMAIL = "alice@example.com"
PASSWORD = "Sw9!kLpq2z"


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "sso.sqlite3")
    db.initialize()
    db.create_app("test", APP_SECRET, app_id=APP_ID)
    return db


def _build_service(database, *, issuer=None, hasher=None, user_provider=None, app_provider=None) -> AuthService:
    return AuthService(
        user_saver=database,
        user_provider=user_provider or database,
        app_provider=app_provider or database,
        hasher=hasher or PasswordHasher(rounds=4),
        issuer=issuer or JWTIssuer(),
        token_ttl=TOKEN_TTL,
    )


@pytest.fixture()
def service(database: Database) -> AuthService:
    return _build_service(database)


class _FailingStore:
    def __init__(self, error: Exception) -> None:
        self.error = error

    def user_by_email(self, email: str, *, deadline=None) -> User:
        raise self.error

    def is_admin(self, user_id: int, *, deadline=None) -> bool:
        raise self.error

    def app(self, app_id: int, *, deadline=None) -> Application:
        raise self.error


class _FailingIssuer:
    def issue(self, user, application, ttl) -> str:
        raise TokenError("secret is malformed")


class _FailingHasher:
    def hash(self, password: str) -> bytes:
        raise OSError("entropy source unavailable")

    def verify(self, digest: bytes, password: str) -> bool:
        return False


class _CancellingHasher:
    """Hasher that lets the call deadline run out while it works."""

    def __init__(self, deadline: Deadline) -> None:
        self.deadline = deadline
        self._inner = PasswordHasher(rounds=4)

    def hash(self, password: str) -> bytes:
        digest = self._inner.hash(password)
        self.deadline.cancel()
        return digest

    def verify(self, digest: bytes, password: str) -> bool:
        return self._inner.verify(digest, password)


def test_register_then_login_returns_token_for_same_user(service: AuthService) -> None:
    user_id = service.register_new_user(EMAIL, PASSWORD)
    assert user_id == 1

    before = time.time()
    token = service.login(EMAIL, PASSWORD, APP_ID)
    after = time.time()

    claims = decode_token(token, APP_SECRET)
    assert claims["uid"] == user_id
    assert claims["email"] == EMAIL
    assert claims["app_id"] == APP_ID
    ttl = TOKEN_TTL.total_seconds()
    assert before + ttl - 1 <= claims["exp"] <= after + ttl + 1


def test_wrong_password_and_unknown_email_fail_identically(service: AuthService) -> None:
    service.register_new_user(EMAIL, PASSWORD)

    with pytest.raises(AuthError) as wrong_password:
        service.login(EMAIL, "wrong", APP_ID)
    with pytest.raises(AuthError) as unknown_email:
        service.login("ghost@example.com", PASSWORD, APP_ID)

    assert wrong_password.value.kind is ErrorKind.INVALID_CREDENTIALS
    assert unknown_email.value.kind is ErrorKind.INVALID_CREDENTIALS
    assert str(wrong_password.value) == str(unknown_email.value) == "auth.login: invalid credentials"


def test_duplicate_registration_keeps_first_account(service: AuthService, database: Database) -> None:
    first_id = service.register_new_user(EMAIL, PASSWORD)

    with pytest.raises(AuthError) as excinfo:
        service.register_new_user(EMAIL, "another-password")

    assert excinfo.value.kind is ErrorKind.USER_ALREADY_EXISTS
    assert excinfo.value.op == "auth.register_new_user"
    assert database.user_by_email(EMAIL).id == first_id
    assert decode_token(service.login(EMAIL, PASSWORD, APP_ID), APP_SECRET)["uid"] == first_id


def test_stored_hash_is_not_the_plaintext(service: AuthService, database: Database) -> None:
    service.register_new_user(EMAIL, PASSWORD)
    stored = database.user_by_email(EMAIL).password_hash
    assert PASSWORD.encode() not in stored


def test_login_with_unknown_application_is_internal(service: AuthService) -> None:
    service.register_new_user(EMAIL, PASSWORD)

    with pytest.raises(AuthError) as excinfo:
        service.login(EMAIL, PASSWORD, 999)

    assert excinfo.value.kind is ErrorKind.INTERNAL
    assert isinstance(excinfo.value.__cause__, StorageError)


def test_login_store_failure_is_internal_with_cause(database: Database) -> None:
    failure = StorageError("storage.user_by_email", "disk I/O error")
    service = _build_service(database, user_provider=_FailingStore(failure))

    with pytest.raises(AuthError) as excinfo:
        service.login(EMAIL, PASSWORD, APP_ID)

    assert excinfo.value.kind is ErrorKind.INTERNAL
    assert excinfo.value.cause is failure
    assert excinfo.value.__cause__ is failure
    assert "disk I/O error" in str(excinfo.value)


def test_signing_failure_is_internal(database: Database) -> None:
    service = _build_service(database, issuer=_FailingIssuer())
    service.register_new_user(EMAIL, PASSWORD)

    with pytest.raises(AuthError) as excinfo:
        service.login(EMAIL, PASSWORD, APP_ID)

    assert excinfo.value.kind is ErrorKind.INTERNAL
    assert isinstance(excinfo.value.__cause__, TokenError)


def test_empty_application_secret_is_internal(tmp_path: Path) -> None:
    class _BlankSecretApps:
        def app(self, app_id: int, *, deadline=None) -> Application:
            return Application(id=app_id, name="blank", secret=b"")

    db = Database(tmp_path / "blank.sqlite3")
    db.initialize()
    service = _build_service(db, app_provider=_BlankSecretApps())
    service.register_new_user(EMAIL, PASSWORD)

    with pytest.raises(AuthError) as excinfo:
        service.login(EMAIL, PASSWORD, APP_ID)
    assert excinfo.value.kind is ErrorKind.INTERNAL


def test_hashing_failure_is_internal(database: Database) -> None:
    service = _build_service(database, hasher=_FailingHasher())

    with pytest.raises(AuthError) as excinfo:
        service.register_new_user(EMAIL, PASSWORD)

    assert excinfo.value.kind is ErrorKind.INTERNAL
    with pytest.raises(UserNotFoundError):
        database.user_by_email(EMAIL)


def test_register_store_failure_is_internal(tmp_path: Path) -> None:
    uninitialised = Database(tmp_path / "empty.sqlite3")
    service = _build_service(uninitialised)

    with pytest.raises(AuthError) as excinfo:
        service.register_new_user(EMAIL, PASSWORD)

    assert excinfo.value.kind is ErrorKind.INTERNAL
    assert isinstance(excinfo.value.__cause__, StorageError)


def test_is_admin_reflects_stored_flag(service: AuthService, database: Database) -> None:
    admin_id = service.register_new_user("root@example.com", PASSWORD)
    regular_id = service.register_new_user(EMAIL, PASSWORD)
    database.set_admin(admin_id)

    assert service.is_admin(admin_id) is True
    assert service.is_admin(regular_id) is False


def test_is_admin_for_unknown_user_is_invalid_app_id(service: AuthService) -> None:
    with pytest.raises(AuthError) as excinfo:
        service.is_admin(12345)

    assert excinfo.value.kind is ErrorKind.INVALID_APP_ID
    assert str(excinfo.value) == "auth.is_admin: invalid app id"


def test_is_admin_store_failure_is_internal(database: Database) -> None:
    service = _build_service(database, user_provider=_FailingStore(StorageError("storage.is_admin", "locked")))

    with pytest.raises(AuthError) as excinfo:
        service.is_admin(1)
    assert excinfo.value.kind is ErrorKind.INTERNAL


def test_concurrent_registration_of_same_email(service: AuthService) -> None:
    workers = 8
    barrier = threading.Barrier(workers)
    results: List[int] = []
    failures: List[AuthError] = []
    lock = threading.Lock()

    def register() -> None:
        barrier.wait()
        try:
            user_id = service.register_new_user("race@example.com", PASSWORD)
        except AuthError as exc:
            with lock:
                failures.append(exc)
        else:
            with lock:
                results.append(user_id)

    threads = [threading.Thread(target=register) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert len(results) == 1
    assert len(failures) == workers - 1
    assert all(exc.kind is ErrorKind.USER_ALREADY_EXISTS for exc in failures)


def test_token_ttl_must_be_positive(database: Database) -> None:
    with pytest.raises(ValueError):
        AuthService(
            user_saver=database,
            user_provider=database,
            app_provider=database,
            hasher=PasswordHasher(rounds=4),
            issuer=JWTIssuer(),
            token_ttl=timedelta(0),
        )


def test_register_that_runs_out_of_time_saves_nothing(database: Database) -> None:
    deadline = Deadline(60)
    service = _build_service(database, hasher=_CancellingHasher(deadline))

    with pytest.raises(DeadlineExceeded) as excinfo:
        service.register_new_user(EMAIL, PASSWORD, deadline=deadline)

    assert excinfo.value.op == "auth.register_new_user"
    with pytest.raises(UserNotFoundError):
        database.user_by_email(EMAIL)
    assert service.register_new_user(EMAIL, PASSWORD) > 0


def test_expired_deadline_is_not_reported_as_internal(service: AuthService) -> None:
    service.register_new_user(EMAIL, PASSWORD)
    expired = Deadline(0)

    with pytest.raises(DeadlineExceeded):
        service.login(EMAIL, PASSWORD, APP_ID, deadline=expired)
    with pytest.raises(DeadlineExceeded):
        service.is_admin(1, deadline=expired)


def test_login_within_deadline_succeeds(service: AuthService) -> None:
    user_id = service.register_new_user(EMAIL, PASSWORD, deadline=Deadline(60))
    token = service.login(EMAIL, PASSWORD, APP_ID, deadline=Deadline(60))
    assert decode_token(token, APP_SECRET)["uid"] == user_id


def test_password_beyond_bcrypt_limit_is_not_truncated(service: AuthService) -> None:
    prefix = "A" * 72
    with pytest.raises(AuthError) as excinfo:
        service.register_new_user(EMAIL, prefix + "correct")
    assert excinfo.value.kind is ErrorKind.INTERNAL

    service.register_new_user(EMAIL, prefix)
    with pytest.raises(AuthError) as login_error:
        service.login(EMAIL, prefix + "totally-different", APP_ID)
    assert login_error.value.kind is ErrorKind.INVALID_CREDENTIALS
