"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic beyond derived state).
Stores map rows into these; the service and routes work with them.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    """Account role flag. Carried and reported, not enforced by the core."""

    USER = "USER"
    ADMIN = "ADMIN"


@dataclass
class Account:
    """A registered user and its account-protection state.

    password_hash is always a bcrypt hash, never the raw password.
    lock_until is the only persisted lock marker: the account is locked while
    now < lock_until. Locked/unlocked is derived at decision time, not stored.
    deleted_at marks a soft delete; the core never hard-deletes accounts.
    name is an optional display name; registration does not collect it.
    """

    username: str
    password_hash: str
    id: str | None = None
    name: str | None = None
    role: Role = Role.USER
    failed_login_attempts: int = 0
    lock_until: datetime | None = None
    last_login_at: datetime | None = None
    password_changed_at: datetime | None = None
    is_active: bool = True
    deleted_at: datetime | None = None
    created_at: datetime | None = None

    def is_locked(self, now: datetime) -> bool:
        return self.lock_until is not None and now < self.lock_until

    def can_authenticate(self) -> bool:
        return self.is_active and self.deleted_at is None


@dataclass
class DeviceToken:
    """The refresh-token record for one (user, device) pair.

    token_hash is the hash of the current raw refresh token. Refresh rotates
    token_hash and expires_at on this same row, so id is stable for the life
    of a device session.
    """

    user_id: str
    device_id: str
    token_hash: str
    expires_at: datetime
    id: str | None = None
    revoked_at: datetime | None = None
    created_at: datetime | None = None

    def is_active(self, now: datetime) -> bool:
        return self.revoked_at is None and now < self.expires_at


@dataclass(frozen=True)
class UserSummary:
    id: str
    username: str


@dataclass(frozen=True)
class AuthResult:
    """Returned by register, login and refresh. Raw tokens are shown only here."""

    user: UserSummary
    access_token: str
    refresh_token: str
