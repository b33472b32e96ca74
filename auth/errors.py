"""
auth/errors.py -- Domain error taxonomy for the auth core.

Every failure the core raises on purpose is an AuthError subclass carrying a
machine-readable code and a client-safe message. The HTTP layer maps each
class to a status code (api/main.py); the core itself knows nothing about
HTTP.

InternalError is the only class the core raises for failures it did not
anticipate. Its message is always generic -- the underlying exception is
chained via `raise ... from exc` and logged, never shown to callers.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for deliberate auth-domain failures."""

    code = "auth_error"
    default_message = "Authentication error."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ConflictError(AuthError):
    code = "conflict"
    default_message = "Username already exists."


class UnauthorizedError(AuthError):
    code = "unauthorized"
    default_message = "Authentication required."


class ForbiddenError(AuthError):
    code = "forbidden"
    default_message = "Account is temporarily locked."


class InvalidInputError(AuthError):
    code = "validation_error"
    default_message = "Invalid input."


class NotFoundError(AuthError):
    code = "not_found"
    default_message = "Resource not found."


class InternalError(AuthError):
    code = "internal_error"
    default_message = "An unexpected error occurred."


class InvalidTokenError(UnauthorizedError):
    """A token failed signature, payload, type or expiry checks."""

    code = "invalid_token"
    default_message = "Invalid or expired token."
