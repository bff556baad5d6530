#!/usr/bin/env python3
"""
Miranda - a small wiki with pluggable logon (username/password or OpenID).
"""

import argparse
import getpass
import logging
import sys
from typing import Optional

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)

#
# NOTE: Keep wiki imports lazy (inside functions) so `--hash-password` works without
# a database driver or the web stack loaded.
#


def _read_password(prompt: str = "Password: ") -> str:
    if not sys.stdin.isatty():
        return sys.stdin.readline().rstrip("\n")
    password = getpass.getpass(prompt)
    if password != getpass.getpass("Repeat password: "):
        raise ValueError("Passwords do not match")
    return password


def migrate() -> None:
    """Apply pending database migrations."""
    from wiki.data.config import build_postgres_dsn, load_database_config
    from wiki.data.migrate import apply_migrations

    dsn = build_postgres_dsn(load_database_config())
    if not dsn:
        raise RuntimeError("Postgres is not configured (set POSTGRES_DSN or POSTGRES_HOST/DB/USER/PASSWORD)")
    n, versions = apply_migrations(dsn=dsn)
    if n:
        print(f"Applied {n} migration(s): {', '.join(versions)}")
    else:
        print("No pending migrations")


def hash_password() -> None:
    """Print a bcrypt hash for a password read from the terminal (or stdin)."""
    from wiki.auth.passwords import hash_password as _hash

    print(_hash(_read_password()))


def create_user(user_name: str, *, identifier: Optional[str] = None, with_password: bool = True) -> None:
    """
    Create a wiki account.

    Args:
        user_name: Logon name (userpass strategy)
        identifier: OpenID subject the account is bound to (openauth strategy)
        with_password: Prompt for a password and store its bcrypt hash
    """
    from wiki.auth.passwords import hash_password as _hash
    from wiki.data.models import WikiUser
    from wiki.data.store import open_wiki_data

    data = open_wiki_data()
    if data is None:
        raise RuntimeError("Postgres is not configured or unreachable")
    try:
        password_hash = _hash(_read_password()) if with_password else None
        user = data.add_user(
            WikiUser(id=0, user_name=user_name, identifier=identifier, password_hash=password_hash)
        )
        print(f"Created user {user.user_name} (id={user.id})")
    finally:
        data.close()


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Run and administer the Miranda wiki",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Apply database migrations
  python main.py --migrate

  # Create a password account
  python main.py --create-user frank

  # Create an OpenID-only account
  python main.py --create-user frank --identifier 1122334455 --no-password

  # Serve the wiki
  WIKI_AUTH_STRATEGY=userpass AUTH_SESSION_SECRET=... python main.py --serve
        """,
    )

    parser.add_argument("--serve", action="store_true", help="Run the wiki HTTP server")
    parser.add_argument("--host", default="0.0.0.0", help="Server bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8080, help="Server listen port (default: 8080)")
    parser.add_argument("--migrate", action="store_true", help="Apply pending database migrations and exit")
    parser.add_argument(
        "--hash-password", action="store_true", help="Print a bcrypt hash for a password (read from the terminal)"
    )
    parser.add_argument("--create-user", metavar="USERNAME", help="Create a wiki account")
    parser.add_argument("--identifier", help="OpenID subject to bind the new account to (with --create-user)")
    parser.add_argument(
        "--no-password", action="store_true", help="Create the account without a password (with --create-user)"
    )

    args = parser.parse_args()

    try:
        if args.migrate:
            migrate()
            return

        if args.hash_password:
            hash_password()
            return

        if args.create_user:
            create_user(args.create_user, identifier=args.identifier, with_password=not args.no_password)
            return

        if args.serve:
            from wiki.api.app import run

            run(host=args.host, port=args.port)
            return

        # No arguments provided
        parser.print_help()

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        raise


if __name__ == "__main__":
    main()
