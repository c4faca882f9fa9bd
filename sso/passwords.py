"""Salted one-way password hashing backed by passlib."""

from __future__ import annotations

from typing import Optional

from passlib.context import CryptContext

DEFAULT_ROUNDS = 12
MIN_ROUNDS = 4
# bcrypt only reads this many bytes of the password.
MAX_PASSWORD_BYTES = 72


class PasswordHasher:
    """Hash and verify passwords with bcrypt.

    The cost factor is a power of two; the default keeps a single hash in the
    hundreds of milliseconds on commodity hardware. Tests pass ``rounds=4``.

    Passwords longer than :data:`MAX_PASSWORD_BYTES` are refused instead of
    being truncated: :meth:`hash` raises ``PasswordTruncateError`` and
    :meth:`verify` returns ``False``.
    """

    def __init__(self, rounds: Optional[int] = None) -> None:
        cost = DEFAULT_ROUNDS if rounds is None else int(rounds)
        if cost < MIN_ROUNDS:
            raise ValueError(f"bcrypt cost must be at least {MIN_ROUNDS}")
        self._rounds = cost
        self._context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=cost,
            bcrypt__truncate_error=True,
        )

    @property
    def rounds(self) -> int:
        return self._rounds

    def hash(self, password: str) -> bytes:
        return self._context.hash(password).encode("ascii")

    def verify(self, digest: bytes, password: str) -> bool:
        if not digest or len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            return False
        try:
            return self._context.verify(password, digest.decode("ascii"))
        except (ValueError, UnicodeDecodeError):
            return False


__all__ = ["DEFAULT_ROUNDS", "MAX_PASSWORD_BYTES", "PasswordHasher"]
