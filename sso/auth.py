"""Authentication use cases: login, registration and admin lookups."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional, Protocol

from .database import AppNotFoundError, UserExistsError, UserNotFoundError
from .deadline import Deadline
from .errors import AuthError, DeadlineExceeded, ErrorKind
from .models import Application, User


class UserSaver(Protocol):
    def save_user(self, email: str, pass_hash: bytes, *, deadline: Optional[Deadline] = None) -> int: ...


class UserProvider(Protocol):
    def user_by_email(self, email: str, *, deadline: Optional[Deadline] = None) -> User: ...

    def is_admin(self, user_id: int, *, deadline: Optional[Deadline] = None) -> bool: ...


class AppProvider(Protocol):
    def app(self, app_id: int, *, deadline: Optional[Deadline] = None) -> Application: ...


class PasswordHasher(Protocol):
    def hash(self, password: str) -> bytes: ...

    def verify(self, digest: bytes, password: str) -> bool: ...


class TokenIssuer(Protocol):
    def issue(self, user: User, application: Application, ttl: timedelta) -> str: ...


class AuthService:
    """Orchestrates credential checks and token issuance.

    The service is stateless between calls; every collaborator is injected so
    storage and crypto backends can be swapped without touching this class.
    Storage signals are translated into :class:`AuthError` values here and
    nowhere else. An expired ``deadline`` surfaces unchanged as
    :class:`DeadlineExceeded`. Nothing is retried.
    """

    def __init__(
        self,
        *,
        user_saver: UserSaver,
        user_provider: UserProvider,
        app_provider: AppProvider,
        hasher: PasswordHasher,
        issuer: TokenIssuer,
        token_ttl: timedelta,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if token_ttl <= timedelta(0):
            raise ValueError("Token TTL must be positive")
        self._user_saver = user_saver
        self._user_provider = user_provider
        self._app_provider = app_provider
        self._hasher = hasher
        self._issuer = issuer
        self._token_ttl = token_ttl
        self._log = logger or logging.getLogger(__name__)

    @property
    def token_ttl(self) -> timedelta:
        return self._token_ttl

    def login(self, email: str, password: str, app_id: int, *, deadline: Optional[Deadline] = None) -> str:
        """Return a signed token for ``email`` scoped to application ``app_id``.

        An unknown email and a wrong password fail identically with
        ``INVALID_CREDENTIALS`` so callers cannot tell whether an account exists.
        """

        op = "auth.login"
        self._log.info("[%s] checking user %s", op, email)

        _check(deadline, op)
        try:
            user = self._user_provider.user_by_email(email, deadline=deadline)
        except UserNotFoundError as exc:
            self._log.warning("[%s] user not found: %s", op, email)
            raise AuthError(ErrorKind.INVALID_CREDENTIALS, op) from exc
        except DeadlineExceeded:
            raise
        except Exception as exc:
            self._log.error("[%s] failed to get user: %s", op, exc)
            raise AuthError(ErrorKind.INTERNAL, op, exc) from exc

        if not self._hasher.verify(user.password_hash, password):
            self._log.warning("[%s] invalid password for %s", op, email)
            raise AuthError(ErrorKind.INVALID_CREDENTIALS, op)

        _check(deadline, op)
        try:
            application = self._app_provider.app(app_id, deadline=deadline)
        except AppNotFoundError as exc:
            self._log.error("[%s] app %s not found", op, app_id)
            raise AuthError(ErrorKind.INTERNAL, op, exc) from exc
        except DeadlineExceeded:
            raise
        except Exception as exc:
            self._log.error("[%s] failed to get app %s: %s", op, app_id, exc)
            raise AuthError(ErrorKind.INTERNAL, op, exc) from exc

        _check(deadline, op)
        try:
            token = self._issuer.issue(user, application, self._token_ttl)
        except Exception as exc:
            self._log.error("[%s] failed to generate token: %s", op, exc)
            raise AuthError(ErrorKind.INTERNAL, op, exc) from exc

        self._log.info("[%s] user %s logged in to app %s", op, email, application.id)
        return token

    def register_new_user(self, email: str, password: str, *, deadline: Optional[Deadline] = None) -> int:
        """Hash ``password`` and persist a new account, returning its id.

        If ``deadline`` expires before the insert commits, no account is
        created and :class:`DeadlineExceeded` is raised.
        """

        op = "auth.register_new_user"
        self._log.info("[%s] registering new user %s", op, email)

        _check(deadline, op)
        try:
            pass_hash = self._hasher.hash(password)
        except Exception as exc:
            self._log.error("[%s] failed to hash password: %s", op, exc)
            raise AuthError(ErrorKind.INTERNAL, op, exc) from exc

        _check(deadline, op)
        try:
            user_id = self._user_saver.save_user(email, pass_hash, deadline=deadline)
        except UserExistsError as exc:
            self._log.warning("[%s] user already exists: %s", op, email)
            raise AuthError(ErrorKind.USER_ALREADY_EXISTS, op) from exc
        except DeadlineExceeded:
            self._log.warning("[%s] deadline exceeded, user %s not saved", op, email)
            raise
        except Exception as exc:
            self._log.error("[%s] failed to save user: %s", op, exc)
            raise AuthError(ErrorKind.INTERNAL, op, exc) from exc

        self._log.info("[%s] user %s created with id %s", op, email, user_id)
        return user_id

    def is_admin(self, user_id: int, *, deadline: Optional[Deadline] = None) -> bool:
        """Return the stored admin flag for ``user_id``.

        A missing user is reported as ``INVALID_APP_ID``.
        """

        op = "auth.is_admin"
        self._log.info("[%s] checking if user %s is admin", op, user_id)

        _check(deadline, op)
        try:
            flag = self._user_provider.is_admin(user_id, deadline=deadline)
        except UserNotFoundError as exc:
            self._log.warning("[%s] user %s not found", op, user_id)
            raise AuthError(ErrorKind.INVALID_APP_ID, op) from exc
        except DeadlineExceeded:
            raise
        except Exception as exc:
            self._log.error("[%s] failed to check admin flag: %s", op, exc)
            raise AuthError(ErrorKind.INTERNAL, op, exc) from exc

        self._log.info("[%s] user %s is_admin=%s", op, user_id, flag)
        return flag


def _check(deadline: Optional[Deadline], op: str) -> None:
    if deadline is not None:
        deadline.check(op)


__all__ = [
    "AppProvider",
    "AuthService",
    "PasswordHasher",
    "TokenIssuer",
    "UserProvider",
    "UserSaver",
]
