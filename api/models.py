"""
API request and response models for AuthKeeper REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire names are camelCase (accessToken, confirmPassword); Python attribute
names stay snake_case via an alias generator. populate_by_name lets tests and
internal callers construct models with either spelling.
"""

import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from auth.models import AuthResult
from auth.service import LogoutType

_DIGIT_RE = re.compile(r"\d")
_SYMBOL_RE = re.compile(r"[^a-zA-Z0-9]")


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/authentication/register.

    Password rules: at least 8 characters, at least one digit, at least one
    non-alphanumeric symbol. confirmPassword must match password. The
    max_length of 255 keeps hashing cost bounded.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    username: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=8, max_length=255)
    confirm_password: str = Field(max_length=255)

    @field_validator("password")
    @classmethod
    def check_complexity(cls, value: str) -> str:
        if not _DIGIT_RE.search(value):
            raise ValueError("Password must contain at least one number")
        if not _SYMBOL_RE.search(value):
            raise ValueError("Password must contain at least one symbol")
        return value

    @model_validator(mode="after")
    def check_confirmation(self) -> "RegisterRequest":
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/authentication/login."""

    username: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=1, max_length=255)


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/authentication/refresh-token."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    refresh_token: str = Field(min_length=1, max_length=4096)


class LogoutRequest(BaseModel):
    """Request body for POST /api/v1/authentication/logout.

    type is passed through as a plain string; the service rejects unknown
    values so the rule lives in one place.
    """

    type: str = LogoutType.current.value


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserSummaryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    username: str


class AuthResponse(BaseModel):
    """Response body for register, login and refresh-token."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    user: UserSummaryResponse
    access_token: str
    refresh_token: str

    @classmethod
    def from_result(cls, result: AuthResult) -> "AuthResponse":
        """Build an AuthResponse from the service's AuthResult."""
        return cls(
            user=UserSummaryResponse(id=result.user.id, username=result.user.username),
            access_token=result.access_token,
            refresh_token=result.refresh_token,
        )


class MeResponse(BaseModel):
    """Response for GET /api/v1/authentication/me."""

    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    role: str
    name: Optional[str] = None


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
