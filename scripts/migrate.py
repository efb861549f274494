"""Run or create database migrations for the scheduling tables."""

import argparse
import sys

from alembic import command
from alembic.config import Config


def main() -> None:
    """Dispatch to an alembic command."""
    parser = argparse.ArgumentParser(description="Scheduling database migrations")
    subparsers = parser.add_subparsers(dest="command")

    upgrade = subparsers.add_parser("upgrade", help="Upgrade to a revision (default: head)")
    upgrade.add_argument("revision", nargs="?", default="head")

    downgrade = subparsers.add_parser("downgrade", help="Downgrade to a revision")
    downgrade.add_argument("revision")

    create = subparsers.add_parser("create", help="Autogenerate a new revision")
    create.add_argument("message", nargs="+")

    args = parser.parse_args()
    alembic_cfg = Config("alembic.ini")

    try:
        if args.command == "create":
            message = " ".join(args.message)
            print(f"Creating migration: {message}")
            command.revision(alembic_cfg, message=message, autogenerate=True)
        elif args.command == "downgrade":
            print(f"Downgrading database to {args.revision}...")
            command.downgrade(alembic_cfg, args.revision)
        else:
            revision = getattr(args, "revision", "head")
            print(f"Upgrading database to {revision}...")
            command.upgrade(alembic_cfg, revision)
    except Exception as e:
        print(f"✗ Migration failed: {e}", file=sys.stderr)
        sys.exit(1)

    print("✓ Done")


if __name__ == "__main__":
    main()
