"""SQLite connection setup (WAL mode)."""

from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

from solar_autopilot.db.migrations import run_migrations

logger = logging.getLogger(__name__)


async def init_db(db_path: str | Path) -> aiosqlite.Connection:
    """Open the database, enable WAL and bring the schema up to date.

    ``":memory:"`` opens a throwaway in-memory database.
    """
    if str(db_path) != ":memory:":
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)

    db = await aiosqlite.connect(str(db_path))
    await db.execute("PRAGMA journal_mode=WAL")
    await db.execute("PRAGMA synchronous=NORMAL")
    await db.execute("PRAGMA busy_timeout=5000")
    db.row_factory = aiosqlite.Row

    await run_migrations(db)
    logger.info("Database initialised at %s", db_path)
    return db


async def close_db(db: aiosqlite.Connection) -> None:
    try:
        await db.execute("PRAGMA wal_checkpoint(TRUNCATE)")
    except aiosqlite.Error:
        logger.warning("WAL checkpoint failed on close", exc_info=True)
    await db.close()
    logger.info("Database connection closed")
