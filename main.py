#!/usr/bin/env python3
"""
Check-In API key management.

API keys are never created over HTTP. An operator issues, lists and revokes
them here; the raw key is printed exactly once, at creation, and only its
bcrypt hash is stored.

Usage:
  python main.py create-key --name "Reporting dashboard" --permission read:budget_allocations
  python main.py create-key --name "Forum bot" --permission create:forum_post \\
      --permission read:recent_forum_posts --site-id 4
  python main.py list-keys
  python main.py revoke-key 7

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the database holding the api_keys table.
                Defaults to checkin.db next to this file.
"""

import argparse
from typing import Optional

from auth.models import CredentialRecord
from auth.permissions import ALLOWED_PERMISSIONS, parse_entitlements
from auth.store import CredentialStore, serialize_permissions
from auth.tokens import display_prefix, generate_api_key, hash_api_key


def _create_key(store: CredentialStore, args: argparse.Namespace) -> int:
    unknown = sorted(set(args.permission) - ALLOWED_PERMISSIONS)
    if unknown:
        print(f"  [!] Unknown permission(s): {', '.join(unknown)}")
        print(f"      Allowed: {', '.join(sorted(ALLOWED_PERMISSIONS))}")
        return 2

    # Keep the order given on the command line, drop repeats.
    permissions = list(dict.fromkeys(args.permission))
    raw_key = generate_api_key()
    key_id = store.create_credential(
        CredentialRecord(
            name=args.name,
            key_hash=hash_api_key(raw_key),
            key_prefix=display_prefix(raw_key),
            permissions=serialize_permissions(permissions),
            associated_user_id=args.user_id,
            associated_site_id=args.site_id,
        )
    )
    print(f"Created API key {key_id} ({args.name})")
    print(f"  Permissions: {', '.join(permissions)}")
    print()
    print(f"  {raw_key}")
    print()
    print("  Store this key now. It cannot be shown again.")
    return 0


def _list_keys(store: CredentialStore, args: argparse.Namespace) -> int:
    records = store.list_credentials()
    if not records:
        print("No API keys.")
        return 0
    print(f"{'ID':>4}  {'PREFIX':<12} {'STATUS':<8} {'LAST USED':<26} NAME / PERMISSIONS")
    for record in records:
        status = "active" if record.is_active else "revoked"
        perms = ", ".join(sorted(parse_entitlements(record.permissions, record.id))) or "(none)"
        print(f"{record.id:>4}  {record.key_prefix:<12} {status:<8} {record.last_used_at or '-':<26} {record.name}")
        print(f"{'':>4}  {'':<12} {'':<8} {'':<26} {perms}")
    return 0


def _revoke_key(store: CredentialStore, args: argparse.Namespace) -> int:
    record = store.get_credential(args.key_id)
    if record is None:
        print(f"  [!] No API key with ID {args.key_id}.")
        return 1
    if not store.revoke_credential(args.key_id):
        print(f"API key {args.key_id} was already revoked at {record.revoked_at}.")
        return 0
    print(f"Revoked API key {args.key_id} ({record.name}).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="checkin-keys",
        description="Issue, list and revoke Check-In API keys.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-key --name dashboard --permission read:budget_allocations
  python main.py list-keys
  python main.py revoke-key 3
  DATABASE_URL=postgresql://user:pw@host/checkin python main.py list-keys
        """,
    )
    parser.add_argument(
        "--db-url",
        metavar="URL",
        default=None,
        help="Database URL (default: DATABASE_URL or the local checkin.db)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-key", help="Issue a new API key and print it once")
    create.add_argument("--name", required=True, help="Label shown in list-keys")
    create.add_argument(
        "--permission",
        action="append",
        required=True,
        metavar="PERM",
        help="Permission to grant; repeat for several (e.g. read:budget_allocations)",
    )
    create.add_argument("--user-id", type=int, default=None, help="User the key acts for, if any")
    create.add_argument("--site-id", type=int, default=None, help="Site the key is scoped to, if any")
    create.set_defaults(handler=_create_key)

    listing = sub.add_parser("list-keys", help="List all keys, including revoked ones")
    listing.set_defaults(handler=_list_keys)

    revoke = sub.add_parser("revoke-key", help="Revoke a key by ID")
    revoke.add_argument("key_id", type=int, metavar="ID")
    revoke.set_defaults(handler=_revoke_key)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    store = CredentialStore(args.db_url)
    try:
        return args.handler(store, args)
    finally:
        store.close()


if __name__ == "__main__":
    raise SystemExit(main())
