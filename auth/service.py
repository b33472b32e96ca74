"""
auth/service.py -- The token lifecycle and account-protection state machine.

AuthService ties the stores, hasher and signer together:

  register  -> new Account + device row           (absent -> active)
  login     -> device row replaced atomically      (any    -> active)
  refresh   -> device row rotated in place          (active -> active')
  logout    -> device row(s) deleted                (active -> absent)

Lockout policy: every failed password check increments
failed_login_attempts. Once the counter reaches max_failed_login_attempts the
account is locked for lock_duration_seconds (lock_until = now + duration) and
counting continues, so a failure after the lock lapses re-locks immediately.
A successful login resets the counter and clears lock_until. Locked/unlocked
is derived from lock_until at decision time.

Error boundary: every public operation runs inside _boundary(). Deliberate
AuthError subclasses pass through unchanged. Anything else (storage, crypto,
configuration) is logged with operation context -- never passwords, raw
tokens or hashes -- and re-raised as a generic InternalError. Nothing is
retried here; retry policy belongs to the caller.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from enum import Enum

from auth.errors import (
    AuthError,
    ConflictError,
    ForbiddenError,
    InternalError,
    InvalidInputError,
    UnauthorizedError,
)
from auth.hashing import hash_secret, make_dummy_hash, verify_secret
from auth.models import Account, AuthResult, DeviceToken, UserSummary
from auth.store import AccountStore, DeviceTokenStore, DuplicateUsernameError
from auth.tokens import ACCESS, REFRESH, sign_token
from core.config import Settings
from core.durations import ConfigurationError, duration_to_seconds, parse_duration

logger = logging.getLogger("authkeeper.auth")

INVALID_CREDENTIALS = "Invalid username or password."
INVALID_REFRESH_TOKEN = "Invalid refresh token."
ACCOUNT_LOCKED = "Account is temporarily locked due to too many failed login attempts."


class LogoutType(str, Enum):
    current = "current"
    all_devices = "all_devices"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require(value: str, name: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInputError(f"{name} is required.")


class AuthService:
    """Register, login, refresh and logout over an AccountStore and DeviceTokenStore.

    Usage:
        engine = open_engine(settings.database_url)
        service = AuthService(AccountStore(engine), DeviceTokenStore(engine), settings)
        result = service.login("john", "Password1!", device_id="d1")
        service.refresh_token(result.user.id, "d1", result.refresh_token)
        service.logout(result.user.id, "d1")

    clock is injectable so tests can move time forward past a lockout or an
    expiry without sleeping.
    """

    def __init__(
        self,
        accounts: AccountStore,
        device_tokens: DeviceTokenStore,
        settings: Settings,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.accounts = accounts
        self.device_tokens = device_tokens
        self.settings = settings
        self._clock = clock
        self._dummy: str | None = None

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def register(self, username: str, password: str, device_id: str) -> AuthResult:
        """Create an account, issue a token pair and bind the refresh token to device_id.

        Password complexity and confirmation are validated upstream. Raises
        ConflictError if the username is taken, whether detected by the
        up-front lookup or by the insert's unique constraint (concurrent
        registration).
        """
        with self._boundary("register user", username=username, device_id=device_id):
            _require(username, "username")
            _require(password, "password")
            _require(device_id, "device_id")
            logger.info("Register user requested username=%s", username)

            if self.accounts.get_by_username(username) is not None:
                raise ConflictError("Username already exists.")

            # Tokens are signed against a pre-assigned id so the account and its
            # device row can be written in a single transaction.
            account = Account(id=str(uuid.uuid4()), username=username, password_hash=self._hash(password))
            now = self._clock()
            access_token, refresh_token, expires_at = self._issue_tokens(account, now)
            token = DeviceToken(
                user_id=account.id,
                device_id=device_id,
                token_hash=self._hash(refresh_token),
                expires_at=expires_at,
            )
            try:
                self.accounts.create_account_with_token(account, token)
            except DuplicateUsernameError as exc:
                raise ConflictError("Username already exists.") from exc
            logger.info("User registered user_id=%s username=%s", account.id, account.username)
            return _result(account, access_token, refresh_token)

    def login(self, username: str, password: str, device_id: str) -> AuthResult:
        """Verify credentials and start (or restart) the session for device_id.

        Unknown username, inactive account and wrong password all raise the
        same UnauthorizedError message. A locked account raises ForbiddenError
        before the password is checked.
        """
        with self._boundary("login", username=username, device_id=device_id):
            _require(username, "username")
            _require(device_id, "device_id")
            now = self._clock()

            account = self.accounts.get_by_username(username)
            if account is None or not account.can_authenticate():
                # Equalize timing with the wrong-password path [C1].
                verify_secret(password or "", self._dummy_hash())
                raise UnauthorizedError(INVALID_CREDENTIALS)

            if account.is_locked(now):
                logger.warning("Login rejected for locked account user_id=%s", account.id)
                raise ForbiddenError(ACCOUNT_LOCKED)

            if not verify_secret(password or "", account.password_hash):
                self._record_failed_login(account, now)
                raise UnauthorizedError(INVALID_CREDENTIALS)

            access_token, refresh_token, expires_at = self._issue_tokens(account, now)
            self.device_tokens.replace_for_device(
                DeviceToken(
                    user_id=account.id,
                    device_id=device_id,
                    token_hash=self._hash(refresh_token),
                    expires_at=expires_at,
                )
            )
            # Only recorded once the session exists.
            self.accounts.update_account(
                account.id,
                failed_login_attempts=0,
                lock_until=None,
                last_login_at=now,
            )
            logger.info("User logged in user_id=%s device_id=%s", account.id, device_id)
            return _result(account, access_token, refresh_token)

    def refresh_token(self, user_id: str, device_id: str, raw_refresh_token: str) -> AuthResult:
        """Rotate the refresh token for (user_id, device_id).

        The token's signature and expiry are checked by the caller's guard
        (verify_refresh_token) before this runs; user_id is the verified
        subject. This method checks the raw token against the stored hash,
        which rejects replayed or already-rotated tokens whose signatures are
        still valid. The row is updated by its own id, keeping its identity.
        """
        with self._boundary("refresh token", user_id=user_id, device_id=device_id):
            _require(user_id, "user_id")
            _require(device_id, "device_id")
            now = self._clock()

            record = self.device_tokens.find_by_device(user_id, device_id)
            if record is None or not record.is_active(now):
                raise UnauthorizedError(INVALID_REFRESH_TOKEN)
            if not verify_secret(raw_refresh_token or "", record.token_hash):
                logger.warning(
                    "Refresh token mismatch user_id=%s device_id=%s token_id=%s", user_id, device_id, record.id
                )
                raise UnauthorizedError(INVALID_REFRESH_TOKEN)

            account = self.accounts.require_by_id(user_id)
            if not account.can_authenticate():
                raise UnauthorizedError(INVALID_REFRESH_TOKEN)

            access_token, refresh_token, expires_at = self._issue_tokens(account, now)
            if not self.device_tokens.update_token(record.id, self._hash(refresh_token), expires_at):
                # Row vanished between lookup and update (concurrent logout).
                raise UnauthorizedError(INVALID_REFRESH_TOKEN)
            logger.info("Refresh token rotated user_id=%s device_id=%s", user_id, device_id)
            return _result(account, access_token, refresh_token)

    def logout(self, user_id: str, device_id: str, logout_type: str = LogoutType.current) -> None:
        """End the session on device_id, or on every device for "all_devices".

        Idempotent: logging out a device with no stored token is not an error.
        """
        with self._boundary("logout", user_id=user_id, device_id=device_id):
            try:
                kind = LogoutType(logout_type)
            except ValueError as exc:
                raise InvalidInputError(
                    f"Invalid logout type {logout_type!r}. Expected 'current' or 'all_devices'."
                ) from exc
            _require(user_id, "user_id")

            if kind is LogoutType.all_devices:
                removed = self.device_tokens.delete_all_for_user(user_id)
            else:
                _require(device_id, "device_id")
                removed = self.device_tokens.delete_by_device(user_id, device_id)
            logger.info(
                "User logged out user_id=%s device_id=%s type=%s removed=%d",
                user_id,
                device_id,
                kind.value,
                removed,
            )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _boundary(self, operation: str, **context: str) -> Iterator[None]:
        try:
            yield
        except AuthError as exc:
            logger.info("%s rejected (%s) %s", operation.capitalize(), exc.code, _describe(context))
            raise
        except Exception as exc:
            logger.exception("%s failed %s", operation.capitalize(), _describe(context))
            raise InternalError(f"Failed to {operation}.") from exc

    def _hash(self, secret: str) -> str:
        return hash_secret(secret, rounds=self.settings.bcrypt_rounds)

    def _dummy_hash(self) -> str:
        # Built on first use at the configured cost [C1].
        if self._dummy is None:
            self._dummy = make_dummy_hash(self.settings.bcrypt_rounds)
        return self._dummy

    def _issue_tokens(self, account: Account, now: datetime) -> tuple[str, str, datetime]:
        """Sign an access/refresh pair for account. Returns (access, refresh, refresh_expires_at)."""
        s = self.settings
        if not (s.jwt_access_secret and s.jwt_refresh_secret and s.jwt_access_expires_in and s.jwt_refresh_expires_in):
            raise ConfigurationError("JWT configuration is missing")

        refresh_ms = parse_duration(s.jwt_refresh_expires_in)
        payload = {"sub": account.id, "username": account.username}
        access_token = sign_token(
            payload, s.jwt_access_secret, duration_to_seconds(s.jwt_access_expires_in), token_type=ACCESS, now=now
        )
        refresh_token = sign_token(
            payload, s.jwt_refresh_secret, duration_to_seconds(s.jwt_refresh_expires_in), token_type=REFRESH, now=now
        )
        return access_token, refresh_token, now + timedelta(milliseconds=refresh_ms)

    def _record_failed_login(self, account: Account, now: datetime) -> None:
        # Read-modify-write on the counter. Concurrent failures may undercount,
        # which is acceptable for a deterrent; the row itself is never at risk.
        attempts = account.failed_login_attempts + 1
        fields: dict = {"failed_login_attempts": attempts}
        if attempts >= self.settings.max_failed_login_attempts:
            fields["lock_until"] = now + timedelta(seconds=self.settings.lock_duration_seconds)
            logger.warning("Account locked user_id=%s failed_attempts=%d", account.id, attempts)
        self.accounts.update_account(account.id, **fields)


def _result(account: Account, access_token: str, refresh_token: str) -> AuthResult:
    return AuthResult(
        user=UserSummary(id=account.id, username=account.username),
        access_token=access_token,
        refresh_token=refresh_token,
    )


def _describe(context: dict) -> str:
    return " ".join(f"{k}={v}" for k, v in context.items())
