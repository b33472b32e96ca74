"""
auth/dependencies.py -- FastAPI Depends() helpers for the auth routes.

These are the boundary guards. The service never reads headers or bodies;
the helpers below pull the device id and verified token claims out of the
request and hand them to the service as plain arguments.

  get_device_id()       -- X-Device-Id header, required on every auth route.
  get_access_claims()   -- Authorization: Bearer <access token>, verified with
                           the access secret.
  get_auth_service()    -- the AuthService wired into app.state by lifespan.

The refresh-token guard lives in the refresh route itself because the token
arrives in the JSON body, which FastAPI has already parsed into a model there.

Layer rule: auth/dependencies.py may import from fastapi because this module
is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request

from auth.errors import UnauthorizedError
from auth.service import AuthService
from auth.tokens import verify_access_token

DEVICE_HEADER = "X-Device-Id"


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_device_id(request: Request) -> str:
    """Return the caller-declared device id. Raises HTTP 400 if missing or blank.

    Clients generate a stable identifier (typically a UUID) once per install
    and send it on every request. It scopes refresh tokens so each device can
    be logged out independently.
    """
    device_id = request.headers.get(DEVICE_HEADER, "").strip()
    if not device_id:
        raise HTTPException(
            status_code=400,
            detail={"code": "device_id_required", "message": f"Header {DEVICE_HEADER} required."},
        )
    if len(device_id) > 191:
        raise HTTPException(
            status_code=400,
            detail={"code": "device_id_invalid", "message": f"Header {DEVICE_HEADER} is too long."},
        )
    return device_id


def get_access_claims(request: Request) -> dict[str, Any]:
    """Require a valid access token. Raises UnauthorizedError (HTTP 401) otherwise.

    Use as a FastAPI dependency:
        @router.post("/protected")
        def route(claims: dict = Depends(get_access_claims)): ...
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise UnauthorizedError()
    service = get_auth_service(request)
    return verify_access_token(auth_header[7:], service.settings)
