"""Domain models shared by the store, the token issuer and the service."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class User:
    """A registered account as loaded from the credential store."""

    id: int
    email: str
    password_hash: bytes = field(repr=False)


@dataclass(frozen=True)
class Application:
    """A pre-provisioned consumer of the service and its signing secret."""

    id: int
    name: str
    secret: bytes = field(repr=False)


__all__ = ["Application", "User"]
