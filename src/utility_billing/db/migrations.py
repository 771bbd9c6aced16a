"""Schema creation and version checks."""

from __future__ import annotations

import logging
import re

import aiosqlite

from utility_billing.db.models import SCHEMA_VERSION, TABLES

logger = logging.getLogger(__name__)

_TABLE_NAME = re.compile(r"CREATE TABLE IF NOT EXISTS (\w+)")

EXPECTED_TABLES = frozenset(
    m.group(1) for m in (_TABLE_NAME.search(stmt) for stmt in TABLES) if m
)


async def schema_version(db: aiosqlite.Connection) -> int:
    """Stored schema version; 0 for a database that has never been migrated."""
    try:
        async with db.execute("SELECT version FROM schema_version WHERE id = 1") as cursor:
            row = await cursor.fetchone()
    except aiosqlite.OperationalError:
        return 0
    return int(row[0]) if row else 0


async def missing_tables(db: aiosqlite.Connection) -> set[str]:
    async with db.execute("SELECT name FROM sqlite_master WHERE type = 'table'") as cursor:
        present = {row[0] for row in await cursor.fetchall()}
    return set(EXPECTED_TABLES - present)


async def run_migrations(db: aiosqlite.Connection) -> int:
    """Bring the database to ``SCHEMA_VERSION`` and return it.

    Every statement is idempotent, so a partially created schema is
    completed in place. A database written by a newer release is refused.
    """
    current = await schema_version(db)
    if current > SCHEMA_VERSION:
        raise RuntimeError(
            f"Database schema version {current} is newer than this release ({SCHEMA_VERSION})"
        )

    if current < SCHEMA_VERSION or await missing_tables(db):
        logger.info("Migrating database schema from v%d to v%d", current, SCHEMA_VERSION)
        for statement in TABLES:
            await db.execute(statement)
        await db.execute(
            "INSERT OR REPLACE INTO schema_version (id, version) VALUES (1, ?)",
            (SCHEMA_VERSION,),
        )
        await db.commit()

    missing = await missing_tables(db)
    if missing:
        raise RuntimeError(f"Database schema is missing tables: {', '.join(sorted(missing))}")
    return SCHEMA_VERSION
