#!/usr/bin/env python3
"""Initialize the academy-guard database schema.

Usage:
    python scripts/setup_db.py
    python scripts/setup_db.py --super-admin auth0|operator-1

No API path can grant ``super_admin``, so platform operators are bootstrapped
here, directly against the database.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from sqlalchemy import text
from uuid_extensions import uuid7

# Ensure project root is on the path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from academy_guard.core.logging import get_logger, setup_logging
from academy_guard.core.types import Role
from academy_guard.db.schema import close_engine, get_engine, init_schema

log = get_logger(__name__)


async def bootstrap_super_admin(identity: str) -> None:
    engine = await get_engine()
    async with engine.begin() as conn:
        await conn.execute(
            text(
                """
                INSERT INTO profiles (profile_id, identity, role)
                VALUES (:pid, :ident, :role)
                ON CONFLICT (identity) DO NOTHING
                """
            ),
            {"pid": str(uuid7()), "ident": identity, "role": Role.SUPER_ADMIN.value},
        )
    log.info("super_admin_bootstrapped", identity=identity)


async def main(super_admins: list[str]) -> None:
    setup_logging()
    log.info("starting_schema_initialization")

    try:
        await init_schema()
        for identity in super_admins:
            await bootstrap_super_admin(identity)
        log.info("schema_initialization_complete")
    except Exception as exc:
        log.error("schema_initialization_failed", error=str(exc))
        raise
    finally:
        await close_engine()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create academy-guard tables")
    parser.add_argument(
        "--super-admin",
        action="append",
        default=[],
        metavar="IDENTITY",
        help="Auth-provider identity to register as super_admin (repeatable)",
    )
    args = parser.parse_args()
    asyncio.run(main(args.super_admin))
