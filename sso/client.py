"""HTTP client for the SSO Auth RPC endpoints."""
from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

SERVICE_PREFIX = "/sso.Auth"


class ServiceError(Exception):
    """Raised when the service answers with an error status."""

    def __init__(self, code: str, message: str, status_code: int) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(f"rpc error: code = {code} desc = {message}")


class AuthClient:
    """Thin synchronous client for ``Login``, ``Register`` and ``IsAdmin``.

    Pass ``client`` to reuse an existing :class:`httpx.Client` (for example a
    FastAPI ``TestClient``); otherwise one is created for ``base_url``.
    """

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:44044",
        *,
        client: Optional[httpx.Client] = None,
        timeout: float = 10.0,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)
        self._timeout = timeout

    def __enter__(self) -> "AuthClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def login(self, email: str, password: str, app_id: int) -> str:
        payload = self._call("Login", {"email": email, "password": password, "app_id": app_id})
        return str(payload["token"])

    def register(self, email: str, password: str) -> int:
        payload = self._call("Register", {"email": email, "password": password})
        return int(payload["user_id"])

    def is_admin(self, user_id: int) -> bool:
        payload = self._call("IsAdmin", {"user_id": user_id})
        return bool(payload["is_admin"])

    def _call(self, method: str, body: Dict[str, Any]) -> Dict[str, Any]:
        response = self._client.post(
            f"{SERVICE_PREFIX}/{method}",
            json=body,
            headers={"X-Request-Timeout": str(self._timeout)},
        )
        if response.status_code != 200:
            try:
                error = response.json()
            except ValueError:
                error = {}
            raise ServiceError(
                str(error.get("code", "UNKNOWN")),
                str(error.get("message", response.text.strip())),
                response.status_code,
            )
        return response.json()


__all__ = ["AuthClient", "ServiceError"]
