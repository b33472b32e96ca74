#!/usr/bin/env python3
"""
AuthKeeper admin CLI -- account and session maintenance from the shell.

Usage:
  python main.py unlock john           # clear failed-login counter and lock
  python main.py logout-all john       # delete every device token for john
  python main.py deactivate john       # block login/refresh and end sessions
  python main.py activate john
  python main.py set-role john ADMIN   # USER or ADMIN
  python main.py set-name john "John Doe"
  python main.py sessions john         # list john's device sessions
  python main.py purge-expired         # delete expired/revoked device tokens

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the auth database (defaults to ./authkeeper.db)
  DEBUG         Set to true to run without configured signing secrets.
"""

import argparse
import sys
from typing import Optional

from auth.models import Account, Role
from auth.store import AccountStore, DeviceTokenStore, open_engine
from core.config import get_settings


def _find_account(accounts: AccountStore, username: str) -> Optional[Account]:
    account = accounts.get_by_username(username)
    if account is None:
        print(f"  [!] No user named '{username}'.")
    return account


def cmd_unlock(accounts: AccountStore, tokens: DeviceTokenStore, args: argparse.Namespace) -> int:
    account = _find_account(accounts, args.username)
    if account is None:
        return 1
    accounts.update_account(account.id, failed_login_attempts=0, lock_until=None)
    print(f"  Unlocked {account.username} (was {account.failed_login_attempts} failed attempts).")
    return 0


def cmd_logout_all(accounts: AccountStore, tokens: DeviceTokenStore, args: argparse.Namespace) -> int:
    account = _find_account(accounts, args.username)
    if account is None:
        return 1
    removed = tokens.delete_all_for_user(account.id)
    print(f"  Removed {removed} device session(s) for {account.username}.")
    return 0


def cmd_set_active(accounts: AccountStore, tokens: DeviceTokenStore, args: argparse.Namespace) -> int:
    account = _find_account(accounts, args.username)
    if account is None:
        return 1
    active = args.command == "activate"
    accounts.update_account(account.id, is_active=active)
    if not active:
        removed = tokens.delete_all_for_user(account.id)
        print(f"  Deactivated {account.username}; removed {removed} device session(s).")
    else:
        print(f"  Activated {account.username}.")
    return 0


def cmd_set_role(accounts: AccountStore, tokens: DeviceTokenStore, args: argparse.Namespace) -> int:
    account = _find_account(accounts, args.username)
    if account is None:
        return 1
    accounts.update_account(account.id, role=Role(args.role))
    print(f"  Set role of {account.username} to {args.role} (was {account.role.value}).")
    return 0


def cmd_set_name(accounts: AccountStore, tokens: DeviceTokenStore, args: argparse.Namespace) -> int:
    account = _find_account(accounts, args.username)
    if account is None:
        return 1
    accounts.update_account(account.id, name=args.name or None)
    print(f"  Set display name of {account.username} to {args.name!r}.")
    return 0


def cmd_sessions(accounts: AccountStore, tokens: DeviceTokenStore, args: argparse.Namespace) -> int:
    account = _find_account(accounts, args.username)
    if account is None:
        return 1
    rows = tokens.list_for_user(account.id)
    if not rows:
        print(f"  {account.username} has no device sessions.")
        return 0
    for row in rows:
        status = "revoked" if row.revoked_at else "active"
        print(f"  {row.device_id:<40} {status:<8} expires {row.expires_at.isoformat()}")
    return 0


def cmd_purge_expired(accounts: AccountStore, tokens: DeviceTokenStore, args: argparse.Namespace) -> int:
    removed = tokens.purge_expired()
    print(f"  Purged {removed} expired device token(s).")
    return 0


_COMMANDS = {
    "unlock": cmd_unlock,
    "logout-all": cmd_logout_all,
    "deactivate": cmd_set_active,
    "activate": cmd_set_active,
    "set-role": cmd_set_role,
    "set-name": cmd_set_name,
    "sessions": cmd_sessions,
    "purge-expired": cmd_purge_expired,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="authkeeper",
        description="AuthKeeper account and session maintenance.",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    for name in ("unlock", "logout-all", "deactivate", "activate", "sessions"):
        p = sub.add_parser(name)
        p.add_argument("username", help="Exact (case-sensitive) username")
    p = sub.add_parser("set-role")
    p.add_argument("username", help="Exact (case-sensitive) username")
    p.add_argument("role", choices=[r.value for r in Role])
    p = sub.add_parser("set-name")
    p.add_argument("username", help="Exact (case-sensitive) username")
    p.add_argument("name", help="Display name; pass '' to clear it")
    sub.add_parser("purge-expired")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    engine = open_engine(get_settings().database_url)
    try:
        return _COMMANDS[args.command](AccountStore(engine), DeviceTokenStore(engine), args)
    finally:
        engine.dispose()


if __name__ == "__main__":
    sys.exit(main())
