#!/usr/bin/env python3
"""
farmvet -- operator commands for the record store.

Usage:
  python main.py create-user admin@example.com --first-name Admin --last-name User
  python main.py create-user vet@example.com --organization-id 3 --role vet
  python main.py reset-password admin@example.com
  python main.py deactivate-user former@example.com

Passwords are read with a hidden prompt unless --password is given (for
provisioning scripts; it is visible in the process list).

Environment variables:
  DATABASE_URL   Record store URL (default: sqlite file next to the code).
                 Overridden by --database-url.
"""

import argparse
import getpass
import sys

from sqlalchemy.exc import IntegrityError

from auth.models import User
from auth.store import RecordStore
from auth.tokens import hash_password
from core.roles import Role, parse_role

_MIN_PASSWORD_LENGTH = 8


def _read_password(given: str | None) -> str | None:
    """Return the password from --password or a confirmed hidden prompt."""
    if given is not None:
        password = given
    else:
        password = getpass.getpass("  Password: ")
        if password != getpass.getpass("  Repeat password: "):
            print("  [!] Passwords do not match.")
            return None
    if len(password) < _MIN_PASSWORD_LENGTH:
        print(f"  [!] Password must be at least {_MIN_PASSWORD_LENGTH} characters.")
        return None
    return password


def create_user(store: RecordStore, args: argparse.Namespace) -> int:
    role: Role | None = None
    if args.organization_id is not None:
        role = parse_role(args.role)
        if role is None:
            print(f"  [!] Unknown role '{args.role}'. Choose one of: {', '.join(r.value for r in Role)}")
            return 2
        if store.get_organization(args.organization_id) is None:
            print(f"  [!] Organization {args.organization_id} does not exist.")
            return 1

    if store.get_by_email(args.email) is not None:
        print(f"  User {args.email} already exists.")
        return 1

    password = _read_password(args.password)
    if password is None:
        return 2

    try:
        uid = store.create_user(
            User(
                email=args.email,
                hashed_password=hash_password(password),
                first_name=args.first_name,
                last_name=args.last_name,
            )
        )
    except IntegrityError:
        print(f"  User {args.email} already exists.")
        return 1
    print(f"  Created user {args.email} (id {uid}).")

    if role is not None:
        store.add_membership(args.organization_id, uid, role)
        print(f"  Added to organization {args.organization_id} as {role.value}.")
    return 0


def reset_password(store: RecordStore, args: argparse.Namespace) -> int:
    user = store.get_by_email(args.email)
    if user is None:
        print(f"  [!] User {args.email} not found.")
        return 1
    password = _read_password(args.password)
    if password is None:
        return 2
    store.update_password(user.id, hash_password(password))
    print(f"  Password reset for {user.email}.")
    return 0


def deactivate_user(store: RecordStore, args: argparse.Namespace) -> int:
    user = store.get_by_email(args.email)
    if user is None:
        print(f"  [!] User {args.email} not found.")
        return 1
    if not user.is_active:
        print(f"  User {user.email} is already inactive.")
        return 0
    store.deactivate_user(user.id)
    print(f"  Deactivated {user.email}. Login and token refresh are now refused.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="farmvet",
        description="Operator commands for farmvet user accounts.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        help="Record store URL (default: DATABASE_URL or the local sqlite file)",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p_create = sub.add_parser("create-user", help="Create a user account")
    p_create.add_argument("email")
    p_create.add_argument("--first-name", default=None)
    p_create.add_argument("--last-name", default=None)
    p_create.add_argument("--password", default=None, help="Password (prompted when omitted)")
    p_create.add_argument("--organization-id", type=int, default=None, help="Attach to this organization")
    p_create.add_argument("--role", default=Role.client.value, help="Role in --organization-id (default: client)")
    p_create.set_defaults(func=create_user)

    p_reset = sub.add_parser("reset-password", help="Set a new password for a user")
    p_reset.add_argument("email")
    p_reset.add_argument("--password", default=None, help="New password (prompted when omitted)")
    p_reset.set_defaults(func=reset_password)

    p_deactivate = sub.add_parser("deactivate-user", help="Block login and refresh for a user")
    p_deactivate.add_argument("email")
    p_deactivate.set_defaults(func=deactivate_user)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 2

    store = RecordStore(args.database_url)
    try:
        return args.func(store, args)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
