"""FastAPI transport exposing the Auth RPC methods."""
from __future__ import annotations

import functools
import logging
from datetime import timedelta
from enum import Enum
from typing import Any, Callable, Dict

import anyio
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .auth import AuthService
from .deadline import Deadline
from .errors import AuthError, DeadlineExceeded, ErrorKind

logger = logging.getLogger("sso.api")

TIMEOUT_HEADER = "x-request-timeout"
SERVICE_PREFIX = "/sso.Auth"

# Identifiers travel as signed 64-bit integers.
INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

# Extra time a worker gets to notice an expired deadline before the handler
# stops waiting for it.
CANCEL_GRACE = timedelta(milliseconds=250)


class Code(str, Enum):
    """RPC status codes reported to clients."""

    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    NOT_FOUND = "NOT_FOUND"
    DEADLINE_EXCEEDED = "DEADLINE_EXCEEDED"
    INTERNAL = "INTERNAL"


_HTTP_STATUS = {
    Code.INVALID_ARGUMENT: status.HTTP_400_BAD_REQUEST,
    Code.UNAUTHENTICATED: status.HTTP_401_UNAUTHORIZED,
    Code.ALREADY_EXISTS: status.HTTP_409_CONFLICT,
    Code.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    Code.DEADLINE_EXCEEDED: status.HTTP_504_GATEWAY_TIMEOUT,
    Code.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class RPCError(Exception):
    """Failure carrying an RPC status code and a user-visible message."""

    def __init__(self, code: Code, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(f"{code.value}: {message}")


class LoginRequest(BaseModel):
    email: str = ""
    password: str = ""
    app_id: int = Field(default=0, ge=INT64_MIN, le=INT64_MAX)


class LoginResponse(BaseModel):
    token: str


class RegisterRequest(BaseModel):
    email: str = ""
    password: str = ""


class RegisterResponse(BaseModel):
    user_id: int


class IsAdminRequest(BaseModel):
    user_id: int = Field(default=0, ge=INT64_MIN, le=INT64_MAX)


class IsAdminResponse(BaseModel):
    is_admin: bool


def _validate_credentials(email: str, password: str) -> None:
    if not email or not password:
        raise RPCError(Code.INVALID_ARGUMENT, "Email or password is required")


def validate_login(request: LoginRequest) -> None:
    _validate_credentials(request.email, request.password)
    if request.app_id == 0:
        raise RPCError(Code.INVALID_ARGUMENT, "AppId is required")


def validate_register(request: RegisterRequest) -> None:
    _validate_credentials(request.email, request.password)


def validate_is_admin(request: IsAdminRequest) -> None:
    if request.user_id == 0:
        raise RPCError(Code.INVALID_ARGUMENT, "UserId is required")


def to_rpc_error(exc: AuthError) -> RPCError:
    """Map a domain failure to the status and message shown to clients."""

    if exc.kind is ErrorKind.INVALID_CREDENTIALS:
        return RPCError(Code.UNAUTHENTICATED, "invalid email or password")
    if exc.kind is ErrorKind.USER_ALREADY_EXISTS:
        return RPCError(Code.ALREADY_EXISTS, "user already exists")
    if exc.kind is ErrorKind.INVALID_APP_ID:
        return RPCError(Code.NOT_FOUND, "user not found")
    return RPCError(Code.INTERNAL, "internal server error")


def _request_budget(request: Request, default: float) -> float:
    raw = request.headers.get(TIMEOUT_HEADER)
    if raw is None:
        return default
    try:
        requested = float(raw)
    except ValueError as exc:
        raise RPCError(Code.INVALID_ARGUMENT, "Invalid request timeout") from exc
    if requested <= 0:
        raise RPCError(Code.DEADLINE_EXCEEDED, "deadline exceeded")
    return min(requested, default)


def create_app(
    *,
    service: AuthService,
    timeout: timedelta = timedelta(seconds=10),
) -> FastAPI:
    """Return the RPC application bound to ``service``.

    Every call runs the synchronous service in a worker thread under a
    deadline; a caller may shorten (never extend) it with ``X-Request-Timeout``.
    The deadline is handed to the service, which stops at its next step and
    rolls back any open store transaction once it expires, so a call reported
    as ``DEADLINE_EXCEEDED`` leaves nothing committed.
    """

    default_budget = timeout.total_seconds()
    grace = CANCEL_GRACE.total_seconds()

    app = FastAPI(
        title="SSO Auth",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.auth_service = service

    async def invoke(request: Request, func: Callable[..., Any], *args: Any) -> Any:
        budget = _request_budget(request, default_budget)
        deadline = Deadline(budget)
        call = functools.partial(func, *args, deadline=deadline)
        try:
            with anyio.fail_after(budget + grace):
                return await anyio.to_thread.run_sync(call, abandon_on_cancel=True)
        except (TimeoutError, DeadlineExceeded) as exc:
            deadline.cancel()
            logger.warning("%s exceeded its %.3fs deadline", request.url.path, budget)
            raise RPCError(Code.DEADLINE_EXCEEDED, "deadline exceeded") from exc
        except AuthError as exc:
            if exc.kind is ErrorKind.INTERNAL:
                logger.error("%s failed: %s", request.url.path, exc, exc_info=exc)
            raise to_rpc_error(exc) from exc

    @app.get("/healthz")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post(f"{SERVICE_PREFIX}/Login", response_model=LoginResponse)
    async def login(payload: LoginRequest, request: Request) -> LoginResponse:
        validate_login(payload)
        token = await invoke(request, service.login, payload.email, payload.password, payload.app_id)
        return LoginResponse(token=token)

    @app.post(f"{SERVICE_PREFIX}/Register", response_model=RegisterResponse)
    async def register(payload: RegisterRequest, request: Request) -> RegisterResponse:
        validate_register(payload)
        user_id = await invoke(request, service.register_new_user, payload.email, payload.password)
        return RegisterResponse(user_id=user_id)

    @app.post(f"{SERVICE_PREFIX}/IsAdmin", response_model=IsAdminResponse)
    async def is_admin(payload: IsAdminRequest, request: Request) -> IsAdminResponse:
        validate_is_admin(payload)
        flag = await invoke(request, service.is_admin, payload.user_id)
        return IsAdminResponse(is_admin=flag)

    @app.exception_handler(RPCError)
    async def handle_rpc_error(_: Request, exc: RPCError):
        return JSONResponse(
            status_code=_HTTP_STATUS[exc.code],
            content={"code": exc.code.value, "message": exc.message},
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(_: Request, exc: RequestValidationError):
        errors = exc.errors()
        location = ".".join(str(part) for part in errors[0]["loc"][1:]) if errors else ""
        message = f"Invalid field: {location}" if location else "Invalid request body"
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"code": Code.INVALID_ARGUMENT.value, "message": message},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception("Unhandled error serving %s", request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"code": Code.INTERNAL.value, "message": "internal server error"},
        )

    return app


__all__ = [
    "Code",
    "IsAdminRequest",
    "LoginRequest",
    "RPCError",
    "RegisterRequest",
    "create_app",
    "to_rpc_error",
    "validate_is_admin",
    "validate_login",
    "validate_register",
]
