"""The process-wide SQLite connection.

File databases run in WAL mode with full synchronous writes, since invoice
and balance commits must survive a crash. ``":memory:"`` is accepted for
throwaway runs.
"""

from __future__ import annotations

import contextlib
import logging
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

from utility_billing.db.migrations import run_migrations

logger = logging.getLogger(__name__)

MEMORY = ":memory:"

_FILE_PRAGMAS = ("PRAGMA journal_mode=WAL", "PRAGMA synchronous=FULL")
_PRAGMAS = ("PRAGMA foreign_keys=ON", "PRAGMA busy_timeout=5000")

_db: aiosqlite.Connection | None = None


async def check_integrity(db: aiosqlite.Connection) -> bool:
    async with db.execute("PRAGMA integrity_check") as cursor:
        rows = await cursor.fetchall()
    problems = [str(r[0]) for r in rows if str(r[0]).lower() != "ok"]
    if problems:
        logger.error("Database integrity check failed: %s", "; ".join(problems[:10]))
    return not problems


async def init_db(db_path: str | Path) -> aiosqlite.Connection:
    """Open (creating if needed) and migrate the database, and make it current."""
    global _db
    target = str(db_path)
    on_disk = target != MEMORY
    if on_disk:
        Path(target).parent.mkdir(parents=True, exist_ok=True)

    db = await aiosqlite.connect(target)
    db.row_factory = aiosqlite.Row
    try:
        for pragma in (*_FILE_PRAGMAS, *_PRAGMAS) if on_disk else _PRAGMAS:
            await db.execute(pragma)
        if on_disk and not await check_integrity(db):
            raise RuntimeError(f"Database at {target} failed its integrity check")
        version = await run_migrations(db)
    except BaseException:
        await db.close()
        raise

    _db = db
    logger.info("Database ready at %s (schema v%d)", target, version)
    return db


async def get_db() -> aiosqlite.Connection:
    if _db is None:
        raise RuntimeError("Database not initialised. Call init_db() first.")
    return _db


async def close_db() -> None:
    """Fold the WAL back into the main file and close."""
    global _db
    if _db is None:
        return
    db, _db = _db, None
    try:
        await db.execute("PRAGMA wal_checkpoint(TRUNCATE)")
    except aiosqlite.Error:
        logger.warning("WAL checkpoint failed", exc_info=True)
    await db.close()
    logger.info("Database connection closed")


@contextlib.asynccontextmanager
async def open_db(db_path: str | Path) -> AsyncIterator[aiosqlite.Connection]:
    """``init_db`` for the duration of a block, closed on exit."""
    db = await init_db(db_path)
    try:
        yield db
    finally:
        await close_db()
