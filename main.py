#!/usr/bin/env python3
"""
ForceMap auth -- administrative command line.

Usage:
  python main.py create-admin --identifier 1001 --military-id 7f9c...
  python main.py create-user --identifier 2002 --military-id 3a1b... --role CHEFE
  python main.py hash-password
  python main.py purge

Passwords are read with getpass (never from argv, which lands in shell
history and process listings). Pipe a password on stdin with
--password-stdin for scripted bootstrap.

Environment variables:
  SECRET_KEY     Required unless DEBUG=true. See core/config.py.
  DATABASE_URL   SQLAlchemy URL of the auth database.
"""

import argparse
import getpass
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.container import build_container
from auth.errors import ValidationError
from auth.models import IDENTIFIER_MAX, IDENTIFIER_MIN, Role, User
from auth.passwords import PasswordHasher
from core.config import get_settings


def _read_password(from_stdin: bool) -> str:
    """Read a new password, from stdin or interactively with confirmation."""
    if from_stdin:
        return sys.stdin.readline().rstrip("\n")
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Repeat password: ")
    if first != second:
        raise ValidationError("Passwords do not match.")
    return first


def _identifier(value: str) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("identifier must be an integer") from exc
    if not IDENTIFIER_MIN <= number <= IDENTIFIER_MAX:
        raise argparse.ArgumentTypeError(f"identifier must be between {IDENTIFIER_MIN} and {IDENTIFIER_MAX}")
    return number


def _create_user(args: argparse.Namespace, role: Role) -> int:
    password = _read_password(args.password_stdin)
    if not password:
        print("  [!] Password must not be empty.")
        return 1
    container = build_container(get_settings())
    try:
        user = User(
            identifier=args.identifier,
            military_id=args.military_id,
            role=role,
            hashed_password=container.hasher.hash(password),
        )
        user_id = container.users.create_user(user)
    except IntegrityError:
        print(f"  [!] A user with identifier {args.identifier} already exists.")
        return 1
    finally:
        container.close()
    print(f"  Created {role.value} user {user_id} (identifier {args.identifier}).")
    return 0


def _hash_password(args: argparse.Namespace) -> int:
    settings = get_settings()
    print(PasswordHasher(rounds=settings.bcrypt_rounds).hash(_read_password(args.password_stdin)))
    return 0


def _purge(args: argparse.Namespace) -> int:
    container = build_container(get_settings())
    try:
        _, sessions = container.purge_expired()
    finally:
        container.close()
    print(f"  Removed {sessions} inactive or expired session(s).")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="forcemap-auth",
        description="Administrative tasks for the ForceMap auth database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command")

    for name, help_text in (("create-admin", "Create an ADMIN user"), ("create-user", "Create a user with a role")):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--identifier", type=_identifier, required=True, help="Numeric login identifier")
        cmd.add_argument("--military-id", required=True, help="Id of the military record this user belongs to")
        cmd.add_argument("--password-stdin", action="store_true", help="Read the password from stdin")
        if name == "create-user":
            cmd.add_argument("--role", choices=[r.value for r in Role], default=Role.BOMBEIRO.value)

    hp = sub.add_parser("hash-password", help="Print a bcrypt hash for a password")
    hp.add_argument("--password-stdin", action="store_true", help="Read the password from stdin")

    sub.add_parser("purge", help="Delete inactive and expired sessions")

    args = parser.parse_args(argv)

    try:
        if args.command == "create-admin":
            return _create_user(args, Role.ADMIN)
        if args.command == "create-user":
            return _create_user(args, Role(args.role))
        if args.command == "hash-password":
            return _hash_password(args)
        if args.command == "purge":
            return _purge(args)
    except ValidationError as exc:
        print(f"  [!] {exc.message}")
        return 1

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
