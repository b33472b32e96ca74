"""
auth/tokens.py -- JWT signing and verification for access and refresh tokens.

Security design decisions:
  JWT: python-jose with HS256. Two independent signing domains -- access
       tokens use JWT_ACCESS_SECRET, refresh tokens use JWT_REFRESH_SECRET.
       Settings refuses identical secrets, and every token also carries a
       "type" claim that verification checks, so a token from one domain can
       never pass verification in the other.

  Claims: sub (account id), username, iat, exp, jti, type. The random jti
       makes two tokens minted for the same user in the same second distinct,
       which refresh rotation relies on.

  Failures: verify_token() raises InvalidTokenError on any problem (bad
       signature, expired, malformed payload, wrong type). The route layer turns
       that into a 401; the message never says which check failed.

verify_access_token() and verify_refresh_token() are the two guards the HTTP
boundary runs before calling into the service.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from jose import JWTError, jwt

from auth.errors import InvalidTokenError

if TYPE_CHECKING:
    from core.config import Settings

_ALGORITHM = "HS256"

ACCESS = "access"
REFRESH = "refresh"


def sign_token(
    payload: dict[str, Any],
    secret: str,
    expires_in_seconds: int,
    token_type: str | None = None,
    now: datetime | None = None,
) -> str:
    """Encode payload as a signed JWT that expires expires_in_seconds after now."""
    issued_at = now or datetime.now(timezone.utc)
    claims = dict(payload)
    claims["iat"] = int(issued_at.timestamp())
    claims["exp"] = int((issued_at + timedelta(seconds=expires_in_seconds)).timestamp())
    claims["jti"] = secrets.token_hex(16)
    if token_type is not None:
        claims["type"] = token_type
    return jwt.encode(claims, secret, algorithm=_ALGORITHM)


def verify_token(token: str, secret: str, expected_type: str | None = None) -> dict[str, Any]:
    """Decode and verify a JWT. Returns the claims dict or raises InvalidTokenError."""
    if not token:
        raise InvalidTokenError()
    try:
        claims = jwt.decode(token, secret, algorithms=[_ALGORITHM])
    except JWTError as exc:
        raise InvalidTokenError() from exc
    if not isinstance(claims.get("sub"), str) or not claims["sub"]:
        raise InvalidTokenError()
    if expected_type is not None and claims.get("type") != expected_type:
        raise InvalidTokenError()
    return claims


def verify_access_token(token: str, settings: Settings) -> dict[str, Any]:
    return verify_token(token, settings.jwt_access_secret, expected_type=ACCESS)


def verify_refresh_token(token: str, settings: Settings) -> dict[str, Any]:
    return verify_token(token, settings.jwt_refresh_secret, expected_type=REFRESH)
