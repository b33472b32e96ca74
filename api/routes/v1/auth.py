"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/authentication/register       -- create account; 201 + token pair
  POST /api/v1/authentication/login          -- password login; token pair
  POST /api/v1/authentication/refresh-token  -- rotate the device's refresh token
  POST /api/v1/authentication/logout         -- end this device's session, or all
  GET  /api/v1/authentication/me             -- current user info (access token)

Every route that touches device tokens requires the X-Device-Id header.

Security:
  [H2] POST /login is rate-limited per IP (LOGIN_RATE_LIMIT, default 10/minute).
  [M5] Cache-Control: no-store on every response that carries tokens.
  Domain errors raised by the service (Conflict, Unauthorized, Forbidden, ...)
  are translated to HTTP by the AuthError handler in api/main.py.

Handlers are plain `def`: bcrypt and the SQLAlchemy calls block, so FastAPI
runs them in its thread pool instead of on the event loop.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter, login_rate_limit
from api.models import (
    AuthResponse,
    LoginRequest,
    LogoutRequest,
    MeResponse,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
)
from auth.dependencies import get_access_claims, get_auth_service, get_device_id
from auth.errors import InvalidTokenError, UnauthorizedError
from auth.service import INVALID_REFRESH_TOKEN, AuthService
from auth.tokens import verify_refresh_token

# Auth policy:
# - POST /register:       public + X-Device-Id
# - POST /login:          public + X-Device-Id, rate limited
# - POST /refresh-token:  refresh token in body (verified here) + X-Device-Id
# - POST /logout:         access token (get_access_claims) + X-Device-Id
# - GET  /me:             access token (get_access_claims)
router = APIRouter(prefix="/authentication")


def _no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store"  # [M5]


@router.post("/register", response_model=AuthResponse, status_code=201)
def register(
    body: RegisterRequest,
    response: Response,
    device_id: str = Depends(get_device_id),
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Register a new account and start a session on the calling device."""
    result = service.register(body.username, body.password, device_id)
    _no_store(response)
    return AuthResponse.from_result(result)


@limiter.limit(login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/login", response_model=AuthResponse)
def login(
    request: Request,
    body: LoginRequest,
    response: Response,
    device_id: str = Depends(get_device_id),
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Authenticate with username and password.

    Wrong username and wrong password return the same 401 body. A locked
    account returns 403 until its lock expires.
    """
    result = service.login(body.username, body.password, device_id)
    _no_store(response)
    return AuthResponse.from_result(result)


@router.post("/refresh-token", response_model=AuthResponse)
def refresh_token(
    body: RefreshRequest,
    response: Response,
    device_id: str = Depends(get_device_id),
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Exchange a refresh token for a new access/refresh pair.

    The signature and expiry are verified with the refresh secret first; the
    service then compares the raw token with the stored hash for this device.
    Every failure returns the same 401 body, so a caller cannot tell a forged
    token from a genuine one that was already rotated out.
    """
    try:
        claims = verify_refresh_token(body.refresh_token, service.settings)
    except InvalidTokenError as exc:
        raise UnauthorizedError(INVALID_REFRESH_TOKEN) from exc
    result = service.refresh_token(claims["sub"], device_id, body.refresh_token)
    _no_store(response)
    return AuthResponse.from_result(result)


@router.post("/logout", response_model=MessageResponse)
def logout(
    body: Optional[LogoutRequest] = None,
    device_id: str = Depends(get_device_id),
    claims: dict[str, Any] = Depends(get_access_claims),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Log out this device ("current", the default) or every device ("all_devices")."""
    logout_type = body.type if body is not None else LogoutRequest().type
    service.logout(claims["sub"], device_id, logout_type)
    return MessageResponse(message="Logged out.")


@router.get("/me", response_model=MeResponse)
def me(
    claims: dict[str, Any] = Depends(get_access_claims),
    service: AuthService = Depends(get_auth_service),
) -> MeResponse:
    """Return identity information for the holder of the access token."""
    account = service.accounts.require_by_id(claims["sub"])
    return MeResponse(id=account.id, username=account.username, name=account.name, role=account.role.value)
