"""
tests/test_cli.py -- Tests for the admin CLI in main.py.

Each test points DATABASE_URL at a fresh SQLite file under tmp_path, seeds it
through the stores, runs main([...]) and checks both the printed output and
the resulting database state.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

import main as cli
from auth.models import Account, DeviceToken, Role
from auth.store import AccountStore, DeviceTokenStore, open_engine
from core.config import get_settings


@pytest.fixture
def db_url(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    get_settings.cache_clear()
    yield url
    get_settings.cache_clear()


@pytest.fixture
def seeded(db_url):
    """Create john with two device sessions (one expired) and a lock in place."""
    engine = open_engine(db_url)
    accounts = AccountStore(engine)
    tokens = DeviceTokenStore(engine)
    now = datetime.now(timezone.utc)
    account = accounts.create_account(
        Account(
            username="john",
            password_hash="$2b$04$fakehashfakehashfakehash",
            failed_login_attempts=5,
            lock_until=now + timedelta(minutes=15),
        )
    )
    tokens.create_token(DeviceToken(account.id, "phone", "h1", now + timedelta(days=30)))
    tokens.create_token(DeviceToken(account.id, "laptop", "h2", now - timedelta(seconds=1)))
    yield accounts, tokens, account
    engine.dispose()


def test_unlock(seeded, capsys):
    accounts, _tokens, account = seeded
    assert cli.main(["unlock", "john"]) == 0
    assert "Unlocked john (was 5 failed attempts)." in capsys.readouterr().out
    stored = accounts.get_by_id(account.id)
    assert stored.failed_login_attempts == 0
    assert stored.lock_until is None


def test_logout_all(seeded, capsys):
    _accounts, tokens, account = seeded
    assert cli.main(["logout-all", "john"]) == 0
    assert "Removed 2 device session(s) for john." in capsys.readouterr().out
    assert tokens.list_for_user(account.id) == []


def test_deactivate_and_activate(seeded, capsys):
    accounts, tokens, account = seeded
    assert cli.main(["deactivate", "john"]) == 0
    assert accounts.get_by_id(account.id).is_active is False
    assert tokens.list_for_user(account.id) == []

    assert cli.main(["activate", "john"]) == 0
    assert accounts.get_by_id(account.id).is_active is True
    assert "Activated john." in capsys.readouterr().out


def test_set_role(seeded, capsys):
    accounts, _tokens, account = seeded
    assert cli.main(["set-role", "john", "ADMIN"]) == 0
    assert "Set role of john to ADMIN (was USER)." in capsys.readouterr().out
    assert accounts.get_by_id(account.id).role is Role.ADMIN


def test_set_role_rejects_unknown_role(seeded):
    with pytest.raises(SystemExit):
        cli.main(["set-role", "john", "ROOT"])


def test_set_and_clear_name(seeded):
    accounts, _tokens, account = seeded
    assert cli.main(["set-name", "john", "John Doe"]) == 0
    assert accounts.get_by_id(account.id).name == "John Doe"
    assert cli.main(["set-name", "john", ""]) == 0
    assert accounts.get_by_id(account.id).name is None


def test_sessions(seeded, capsys):
    assert cli.main(["sessions", "john"]) == 0
    out = capsys.readouterr().out
    assert "phone" in out
    assert "laptop" in out


def test_purge_expired(seeded, capsys):
    _accounts, tokens, account = seeded
    assert cli.main(["purge-expired"]) == 0
    assert "Purged 1 expired device token(s)." in capsys.readouterr().out
    assert [t.device_id for t in tokens.list_for_user(account.id)] == ["phone"]


def test_unknown_user(db_url, capsys):
    assert cli.main(["unlock", "nobody"]) == 1
    assert "No user named 'nobody'" in capsys.readouterr().out


def test_missing_username_exits(db_url):
    with pytest.raises(SystemExit):
        cli.main(["unlock"])
