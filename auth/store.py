"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts and device tokens.

Pattern: Repository + Data Mapper. AccountStore and DeviceTokenStore are the
repositories; _row_to_account / _row_to_device_token are the mappers. The
service never touches SQL directly, and the stores hold no business rules.

Both repositories share one Engine created by open_engine(). The engine is
explicitly constructed and owned by whoever builds the service (the app
lifespan, the CLI, or a test fixture) and disposed by that owner.

Schema notes:
  users.username is UNIQUE. A violation on insert surfaces as
  DuplicateUsernameError so the service can tell it apart from other
  persistence failures.

  user_access_tokens has UNIQUE(user_id, device_id): at most one refresh
  token row per device. user_id cascades on account delete (SQLite needs
  PRAGMA foreign_keys=ON per connection for that).

  Timestamps are stored as UTC ISO 8601 text with microsecond precision.
  Fixed-width UTC strings sort chronologically, so expiry comparisons work
  in SQL.

Concurrency:
  create_account_with_token() writes the account and its first device token
  in one transaction, so registration is all-or-nothing.
  replace_for_device() runs delete + insert inside one transaction, so a
  concurrent refresh sees either the old row or the new one, never neither.
  update_token() updates by row id so concurrent refreshes on one device
  serialize on the row update (last writer wins).

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import NotFoundError
from auth.models import Account, DeviceToken, Role

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'authkeeper.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("username", String(191), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("name", String(191)),
    Column("role", String(16), nullable=False, server_default=Role.USER.value),
    Column("failed_login_attempts", Integer, nullable=False, server_default="0"),
    Column("lock_until", String(32)),
    Column("last_login_at", String(32)),
    Column("password_changed_at", String(32)),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("deleted_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

_device_tokens = Table(
    "user_access_tokens",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("device_id", String(191), nullable=False),
    Column("token_hash", Text, nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("revoked_at", String(32)),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("user_id", "device_id", name="uq_user_access_tokens_user_device"),
    Index("ix_user_access_tokens_expires_at", "expires_at"),
    Index("ix_user_access_tokens_revoked_expires", "revoked_at", "expires_at"),
)

# Fields update_account() accepts. Anything else is rejected before SQL.
_MUTABLE_ACCOUNT_FIELDS = frozenset(
    {
        "password_hash",
        "password_changed_at",
        "name",
        "role",
        "failed_login_attempts",
        "lock_until",
        "last_login_at",
        "is_active",
        "deleted_at",
    }
)


class DuplicateUsernameError(Exception):
    """Raised by create_account() when the username is already taken."""


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journaling and foreign-key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. foreign_keys=ON is what makes the device-token
    cascade on account delete actually fire.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


def open_engine(db_url: str = _DEFAULT_DB_URL) -> Engine:
    """Create an Engine for db_url and ensure the auth schema exists."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        # FastAPI runs sync handlers in a thread pool; pooled connections may
        # be used from a thread other than the one that opened them.
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    _metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account records.

    Usage:
        engine = open_engine()
        accounts = AccountStore(engine)
        account = accounts.create_account(Account(username="john", password_hash=hash_secret("...")))
        accounts.update_account(account.id, failed_login_attempts=0, lock_until=None)
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create_account(self, account: Account) -> Account:
        """Insert a new account and return it with id and created_at filled in.

        Raises DuplicateUsernameError if the username already exists. Any other
        IntegrityError propagates unchanged.
        """
        return self.create_account_with_token(account, None)

    def create_account_with_token(self, account: Account, token: DeviceToken | None) -> Account:
        """Insert account and, if given, its first device token in one transaction.

        Either both rows are committed or neither is, so a failed registration
        never leaves an account without its session behind. token.user_id must
        equal account.id; callers sign tokens against the id before persisting,
        so account.id is normally set already.
        """
        if not account.password_hash:
            raise ValueError("password_hash must be a non-empty hash")
        account.id = account.id or _new_id()
        if token is not None and token.user_id != account.id:
            raise ValueError("token.user_id does not match account.id")
        created_at = _now()
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _users.insert().values(
                        id=account.id,
                        username=account.username,
                        password_hash=account.password_hash,
                        name=account.name,
                        role=Role(account.role).value,
                        failed_login_attempts=account.failed_login_attempts,
                        lock_until=_to_iso(account.lock_until),
                        last_login_at=_to_iso(account.last_login_at),
                        password_changed_at=_to_iso(account.password_changed_at),
                        is_active=1 if account.is_active else 0,
                        deleted_at=_to_iso(account.deleted_at),
                        created_at=_to_iso(created_at),
                    )
                )
                if token is not None:
                    _insert_device_token(conn, token)
                conn.commit()
        except IntegrityError as exc:
            if self._username_taken(account.username):
                raise DuplicateUsernameError(account.username) from exc
            raise
        account.created_at = created_at
        return account

    def _username_taken(self, username: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_users).where(_users.c.username == username)
            ).scalar()
        return (result or 0) > 0

    def get_by_username(self, username: str) -> Account | None:
        """Look up an account by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_id(self, account_id: str) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def require_by_id(self, account_id: str) -> Account:
        """Like get_by_id() but raises NotFoundError when the account does not exist."""
        account = self.get_by_id(account_id)
        if account is None:
            raise NotFoundError("User not found.")
        return account

    def update_account(self, account_id: str, **fields) -> bool:
        """Partially update mutable fields on an account.

        Only keys that are passed are written: omitting lock_until leaves it
        alone, passing lock_until=None clears it. Unknown keys raise ValueError
        rather than being silently ignored, as does a role outside Role.

        Returns True if a row was updated, False if account_id was not found
        or no fields were supplied.
        """
        unknown = set(fields) - _MUTABLE_ACCOUNT_FIELDS
        if unknown:
            raise ValueError(f"Unknown account fields: {sorted(unknown)!r}")
        if not fields:
            return False
        values = {}
        for key, value in fields.items():
            if isinstance(value, datetime):
                value = _to_iso(value)
            elif key == "is_active":
                value = 1 if value else 0
            elif key == "role":
                value = Role(value).value
            values[key] = value
        if "password_hash" in values and not values["password_hash"]:
            raise ValueError("password_hash must be a non-empty hash")
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == account_id).values(**values))
            conn.commit()
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Device tokens
# ---------------------------------------------------------------------------


class DeviceTokenStore:
    """Repository for per-device refresh-token records."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create_token(self, token: DeviceToken) -> DeviceToken:
        """Insert a device token row and return it with id and created_at set.

        Raises IntegrityError if a row for (user_id, device_id) already exists.
        """
        with self.engine.connect() as conn:
            _insert_device_token(conn, token)
            conn.commit()
        return token

    def replace_for_device(self, token: DeviceToken) -> DeviceToken:
        """Delete any row for (token.user_id, token.device_id) and insert token, atomically.

        Both statements run in one transaction. If the insert fails the delete
        is rolled back when the connection closes without commit.
        """
        with self.engine.connect() as conn:
            conn.execute(
                _device_tokens.delete().where(
                    (_device_tokens.c.user_id == token.user_id) & (_device_tokens.c.device_id == token.device_id)
                )
            )
            _insert_device_token(conn, token)
            conn.commit()
        return token

    def find_by_device(self, user_id: str, device_id: str) -> DeviceToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _device_tokens.select().where(
                    (_device_tokens.c.user_id == user_id) & (_device_tokens.c.device_id == device_id)
                )
            ).fetchone()
        return _row_to_device_token(row) if row is not None else None

    def list_for_user(self, user_id: str) -> list[DeviceToken]:
        """Return every device token row owned by user_id, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _device_tokens.select()
                .where(_device_tokens.c.user_id == user_id)
                .order_by(_device_tokens.c.created_at)
            ).fetchall()
        return [_row_to_device_token(r) for r in rows]

    def update_token(self, token_id: str, token_hash: str, expires_at: datetime) -> bool:
        """Rotate the hash and expiry on an existing row, keyed by its own id.

        Returns True if the row was updated, False if it no longer exists
        (e.g. a concurrent logout deleted it).
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _device_tokens.update()
                .where(_device_tokens.c.id == token_id)
                .values(token_hash=token_hash, expires_at=_to_iso(expires_at))
            )
            conn.commit()
        return result.rowcount > 0

    def delete_by_device(self, user_id: str, device_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _device_tokens.delete().where(
                    (_device_tokens.c.user_id == user_id) & (_device_tokens.c.device_id == device_id)
                )
            )
            conn.commit()
        return result.rowcount

    def delete_all_for_user(self, user_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_device_tokens.delete().where(_device_tokens.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def delete_by_id(self, token_id: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_device_tokens.delete().where(_device_tokens.c.id == token_id))
            conn.commit()
        return result.rowcount > 0

    def purge_expired(self, now: datetime | None = None) -> int:
        """Delete rows that are expired or revoked. Returns the number of rows removed."""
        cutoff = _to_iso(now or _now())
        with self.engine.connect() as conn:
            result = conn.execute(
                _device_tokens.delete().where(
                    (_device_tokens.c.expires_at <= cutoff) | (_device_tokens.c.revoked_at.is_not(None))
                )
            )
            conn.commit()
        return result.rowcount


def _insert_device_token(conn, token: DeviceToken) -> None:
    """Insert token on an open connection without committing. Fills in id and created_at."""
    token.id = token.id or _new_id()
    token.created_at = token.created_at or _now()
    conn.execute(
        _device_tokens.insert().values(
            id=token.id,
            user_id=token.user_id,
            device_id=token.device_id,
            token_hash=token.token_hash,
            expires_at=_to_iso(token.expires_at),
            revoked_at=_to_iso(token.revoked_at),
            created_at=_to_iso(token.created_at),
        )
    )


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        username=row.username,
        password_hash=row.password_hash,
        name=row.name,
        role=Role(row.role),
        failed_login_attempts=row.failed_login_attempts or 0,
        lock_until=_from_iso(row.lock_until),
        last_login_at=_from_iso(row.last_login_at),
        password_changed_at=_from_iso(row.password_changed_at),
        is_active=bool(row.is_active),
        deleted_at=_from_iso(row.deleted_at),
        created_at=_from_iso(row.created_at),
    )


def _row_to_device_token(row) -> DeviceToken:
    return DeviceToken(
        id=row.id,
        user_id=row.user_id,
        device_id=row.device_id,
        token_hash=row.token_hash,
        expires_at=_from_iso(row.expires_at),
        revoked_at=_from_iso(row.revoked_at),
        created_at=_from_iso(row.created_at),
    )
