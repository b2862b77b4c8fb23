#!/usr/bin/env python3
"""
Kavyakala -- account administration from the command line.

The HTTP API never creates admins, so the first one is seeded here.

Usage:
  python main.py seed-admin --name "Site Admin" --email admin@example.com --handle admin
  python main.py seed-admin --email admin@example.com --handle admin --password-stdin < pw.txt
  python main.py list-users
  python main.py list-users --json

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the user store (default: sqlite:///kavyakala_auth.db)
  SECRET_KEY    Required unless DEBUG=true (settings are shared with the API).
"""

import argparse
import getpass
import json
import sys

from auth import accounts
from auth.store import UserStore
from core.config import get_settings
from core.errors import AppError


def _read_password(args: argparse.Namespace) -> str:
    if args.password_stdin:
        return sys.stdin.readline().rstrip("\n")
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Repeat password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        sys.exit(1)
    return first


def _seed_admin(store: UserStore, args: argparse.Namespace) -> int:
    existing = store.find_admin()
    if existing is not None:
        print(f"  Admin already exists: #{existing.id} {existing.handle} <{existing.email}>")
        return 0
    password = _read_password(args)
    try:
        user, _ = accounts.seed_admin(
            store, name=args.name, email=args.email, handle=args.handle, password=password
        )
    except AppError as e:
        print(f"  [!] {e.message}")
        return 1
    print(f"  Admin created: #{user.id} {user.handle} <{user.email}>")
    return 0


def _list_users(store: UserStore, args: argparse.Namespace) -> int:
    users = store.list_users()
    if args.json:
        rows = [
            {
                "id": u.id,
                "name": u.name,
                "email": u.email,
                "handle": u.handle,
                "role": u.role.value,
                "is_active": u.is_active,
                "is_verified": u.is_verified,
                "created_at": u.created_at,
            }
            for u in users
        ]
        print(json.dumps(rows, indent=2))
        return 0
    if not users:
        print("  No accounts.")
        return 0
    print(f"  {'ID':>5}  {'HANDLE':<20} {'ROLE':<9} {'ACTIVE':<7} {'VERIFIED':<9} EMAIL")
    print("  " + "─" * 72)
    for u in users:
        print(
            f"  {u.id:>5}  {u.handle:<20} {u.role.value:<9} "
            f"{'yes' if u.is_active else 'no':<7} {'yes' if u.is_verified else 'no':<9} {u.email}"
        )
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="main.py",
        description="Kavyakala account administration.",
        epilog=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    seed = sub.add_parser("seed-admin", help="Create the first admin account if none exists")
    seed.add_argument("--name", default="Administrator", help="Display name (default: Administrator)")
    seed.add_argument("--email", required=True, help="Admin email address")
    seed.add_argument("--handle", required=True, help="Admin handle")
    seed.add_argument(
        "--password-stdin",
        action="store_true",
        help="Read the password from the first line of stdin instead of prompting",
    )

    lst = sub.add_parser("list-users", help="List all accounts, newest first")
    lst.add_argument("--json", action="store_true", help="Output as JSON")

    args = parser.parse_args()

    store = UserStore(get_settings().database_url)
    try:
        if args.command == "seed-admin":
            code = _seed_admin(store, args)
        else:
            code = _list_users(store, args)
    finally:
        store.close()
    sys.exit(code)


if __name__ == "__main__":
    main()
