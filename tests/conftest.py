"""
tests/conftest.py -- Shared test fixtures for AuthKeeper.

This module provides:
  - settings:        Settings with fixed, distinct signing secrets and bcrypt
                     at its minimum cost (4) so hashing does not dominate runtime
  - engine / stores: a private in-memory SQLite database per test
  - clock:           a controllable clock so lockout and expiry tests can move
                     time forward without sleeping
  - service:         AuthService wired to the above
  - api_client:      TestClient with a patched lifespan and isolated stores

Design: api_client uses a named shared-memory SQLite URI (not plain :memory:)
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI shares one in-memory instance across all connections.

DEBUG and LOGIN_RATE_LIMIT must be set before any app import so
get_settings() does not demand production secrets and the login rate limit
does not trip across a module's worth of logins.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set before any auth/core/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.service import AuthService
from auth.store import AccountStore, DeviceTokenStore, open_engine
from core.config import Settings

ACCESS_SECRET = "access-secret-for-tests-0123456789abcdef"
REFRESH_SECRET = "refresh-secret-for-tests-0123456789abcdef"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "jwt_access_secret": ACCESS_SECRET,
        "jwt_refresh_secret": REFRESH_SECRET,
        "jwt_access_expires_in": "15m",
        "jwt_refresh_expires_in": "30d",
        "bcrypt_rounds": 4,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def unique_username(prefix: str = "user") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def engine():
    eng = open_engine("sqlite:///:memory:")
    yield eng
    eng.dispose()


@pytest.fixture
def accounts(engine) -> AccountStore:
    return AccountStore(engine)


@pytest.fixture
def device_tokens(engine) -> DeviceTokenStore:
    return DeviceTokenStore(engine)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def service(accounts, device_tokens, settings, clock) -> AuthService:
    return AuthService(accounts, device_tokens, settings, clock=clock)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(engine, service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires the test engine, stores and service into app.state so TestClient
    routes see an isolated database. The purge_task is a long-sleeping
    coroutine so shutdown has a real asyncio.Task to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.engine = engine
        app.state.accounts = service.accounts
        app.state.device_tokens = service.device_tokens
        app.state.auth_service = service
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[TestClient, None, None]:
    """Yield a TestClient backed by a fresh shared-memory auth database.

    Module-scoped for speed: tests in one module share the database, so each
    test registers its own unique usernames.
    """
    eng = open_engine(f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    svc = AuthService(AccountStore(eng), DeviceTokenStore(eng), make_settings())
    app.router.lifespan_context = _patch_lifespan(eng, svc)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    eng.dispose()
