from __future__ import annotations

import argparse
import asyncio
import sys

from accessgate.core.config import get_settings
from accessgate.persistence.db import Database


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Create the accessgate schema in the configured database")
    parser.add_argument("--drop", action="store_true", help="Drop existing tables first (destroys data)")
    return parser


async def _init_db(args: argparse.Namespace) -> int:
    settings = get_settings()
    database = Database.from_settings(settings)
    try:
        if args.drop:
            await database.drop_all()
        await database.create_all()
    finally:
        await database.dispose()
    print(f"Schema ready at {settings.database_url.split('@')[-1]}")
    return 0


def main() -> int:
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_init_db(args))
    except Exception as exc:  # noqa: BLE001 - surface connection and DDL errors clearly
        print(f"init_db failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
