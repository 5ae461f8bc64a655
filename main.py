#!/usr/bin/env python3
"""
credgate -- operator commands for the credential service.

Usage:
  python main.py generate-key
  python main.py create-user admin@example.com --role ADMIN
  python main.py purge-tokens

Environment variables (same as the API, see core/config.py):
  DATABASE_URL  SQLAlchemy URL of the auth database (default: sqlite:///credgate.db)
  SECRET_KEY    Not needed by these commands; generate-key prints a fresh one.
"""

import argparse
import getpass
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.ephemeral import EphemeralTokenStore
from auth.keys import generate_secret
from auth.models import Identity, Role, TokenKind
from auth.passwords import hash_password
from auth.schema import make_engine
from auth.store import IdentityStore
from core.clock import utcnow
from core.config import get_settings

_PURGEABLE_KINDS = (TokenKind.VERIFICATION, TokenKind.PASSWORD_RESET, TokenKind.INVITE)


def _cmd_generate_key(args: argparse.Namespace) -> int:
    print(generate_secret())
    return 0


def _read_password(prompt_for: str) -> Optional[str]:
    """Prompt twice for a password without echo. Returns None if they differ."""
    first = getpass.getpass(f"Password for {prompt_for}: ")
    second = getpass.getpass("Repeat password: ")
    if first != second:
        print("  [!] Passwords do not match.", file=sys.stderr)
        return None
    if len(first) < 8:
        print("  [!] Password must be at least 8 characters.", file=sys.stderr)
        return None
    return first


def _cmd_create_user(args: argparse.Namespace) -> int:
    """Create an already-verified identity. Used to bootstrap the first admin."""
    store = IdentityStore(make_engine(args.database_url))
    if store.exists_by_username(args.username):
        print(f"  [!] '{args.username}' already exists.", file=sys.stderr)
        return 1

    password = _read_password(args.username)
    if password is None:
        return 1

    try:
        identity = store.save(
            Identity(
                username=args.username,
                hashed_password=hash_password(password),
                role=args.role,
                verified=True,
                manager_id=args.manager_id,
            )
        )
    except IntegrityError:
        print("  [!] Username or manager id already taken.", file=sys.stderr)
        return 1
    print(f"  Created {identity.role} '{identity.username}' (id={identity.id}).")
    return 0


def _cmd_purge_tokens(args: argparse.Namespace) -> int:
    """Delete expired verification, reset, and invite tokens."""
    engine = make_engine(args.database_url)
    now = utcnow()
    total = 0
    for kind in _PURGEABLE_KINDS:
        removed = EphemeralTokenStore(engine, kind).purge_expired(now)
        print(f"  {kind.value:<15} {removed} expired token(s) removed")
        total += removed
    print(f"  Total: {total}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="credgate",
        description="Operator commands for the credgate credential service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  SECRET_KEY=$(python main.py generate-key) uvicorn api.main:app
  python main.py create-user admin@example.com --role ADMIN
  python main.py purge-tokens --database-url sqlite:///credgate.db
        """,
    )
    parser.add_argument(
        "--database-url",
        default=None,
        metavar="URL",
        help="SQLAlchemy database URL (default: DATABASE_URL from the environment)",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    gen = sub.add_parser("generate-key", help="Print a fresh base64 256-bit SECRET_KEY")
    gen.set_defaults(func=_cmd_generate_key)

    create = sub.add_parser("create-user", help="Create a verified identity (prompts for the password)")
    create.add_argument("username", help="Login name; also the email address links are sent to")
    create.add_argument(
        "--role",
        choices=[Role.ADMIN, Role.MANAGER, Role.USER],
        default=Role.ADMIN,
        help="Role to assign (default: ADMIN)",
    )
    create.add_argument("--manager-id", type=int, default=None, help="Manager profile id to link")
    create.set_defaults(func=_cmd_create_user)

    purge = sub.add_parser("purge-tokens", help="Delete expired ephemeral tokens")
    purge.set_defaults(func=_cmd_purge_tokens)

    args = parser.parse_args()
    if args.command is None:
        parser.print_help()
        return

    if args.database_url is None:
        args.database_url = get_settings().database_url
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
