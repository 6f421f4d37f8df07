"""Ridestream database management CLI.

Usage:
    python src/manage.py setup-db   # Create all tables
    python src/manage.py drop-db    # Drop all tables
"""

import argparse
import asyncio
import sys

from shared.settings import get_settings
from shared.utils.db import create_engine, drop_db, setup_db


async def _run(command):
    settings = get_settings()
    engine = create_engine(settings)
    try:
        await command(engine)
    finally:
        await engine.dispose()


def setup_database():
    print("Creating database schema...")
    asyncio.run(_run(setup_db))
    print("Done.")


def drop_database():
    print("Dropping database schema...")
    asyncio.run(_run(drop_db))
    print("Done.")


def main():
    parser = argparse.ArgumentParser(description="Ridestream database management")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("setup-db", help="Create all database tables")
    subparsers.add_parser("drop-db", help="Drop all database tables")

    args = parser.parse_args()

    if args.command == "setup-db":
        setup_database()
    elif args.command == "drop-db":
        drop_database()
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
