"""Domain error taxonomy for the authentication service."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Classification of a failure, independent of any transport encoding."""

    INVALID_CREDENTIALS = "invalid_credentials"
    USER_ALREADY_EXISTS = "user_already_exists"
    INVALID_APP_ID = "invalid_app_id"
    INTERNAL = "internal"


_MESSAGES = {
    ErrorKind.INVALID_CREDENTIALS: "invalid credentials",
    ErrorKind.USER_ALREADY_EXISTS: "user already exists",
    ErrorKind.INVALID_APP_ID: "invalid app id",
    ErrorKind.INTERNAL: "internal error",
}


class AuthError(Exception):
    """Failure raised by :class:`sso.auth.AuthService`.

    ``kind`` is what callers branch on; ``op`` names the service operation that
    failed and ``cause`` is the underlying exception, if any (also available as
    ``__cause__`` when raised with ``from``).
    """

    def __init__(self, kind: ErrorKind, op: str, cause: Optional[BaseException] = None) -> None:
        self.kind = kind
        self.op = op
        self.cause = cause
        super().__init__(f"{op}: {self.message}")

    @property
    def message(self) -> str:
        if self.kind is ErrorKind.INTERNAL and self.cause is not None:
            return str(self.cause) or _MESSAGES[self.kind]
        return _MESSAGES[self.kind]


class DeadlineExceeded(Exception):
    """Raised when a call runs out of time before it could finish."""

    def __init__(self, op: str) -> None:
        self.op = op
        super().__init__(f"{op}: deadline exceeded")


class ConfigError(ValueError):
    """Raised when the service configuration is missing or malformed."""


__all__ = ["AuthError", "ConfigError", "DeadlineExceeded", "ErrorKind"]
