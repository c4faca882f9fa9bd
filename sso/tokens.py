"""Identity token issuance using HMAC-signed JWTs."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from jose import jwk, jwt
from jose.exceptions import JOSEError

from .models import Application, User

ALGORITHM = "HS256"


class TokenError(RuntimeError):
    """Raised when a token cannot be signed or decoded."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JWTIssuer:
    """Build and sign identity tokens with the application's shared secret.

    The issuer never verifies tokens; whoever needs to trust one decodes it with
    the same secret (see :func:`decode_token`).
    """

    def __init__(self, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or _utcnow

    def issue(self, user: User, application: Application, ttl: timedelta) -> str:
        if not application.secret:
            raise TokenError(f"application {application.id} has no signing secret")

        expires_at = self._clock() + ttl
        claims: Dict[str, Any] = {
            "uid": user.id,
            "email": user.email,
            "app_id": application.id,
            "exp": int(expires_at.timestamp()),
        }
        try:
            return jwt.encode(claims, application.secret, algorithm=ALGORITHM)
        except JOSEError as exc:
            raise TokenError(f"failed to sign token for application {application.id}") from exc


def decode_token(token: str, secret: bytes | str) -> Dict[str, Any]:
    """Verify the signature and expiry of ``token`` and return its claims."""

    try:
        key = jwk.construct(secret, ALGORITHM)
        return jwt.decode(token, key, algorithms=[ALGORITHM])
    except JOSEError as exc:
        raise TokenError("Invalid token") from exc


__all__ = ["ALGORITHM", "JWTIssuer", "TokenError", "decode_token"]
