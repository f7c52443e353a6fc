"""
SQLite connection management and schema initialization for the interaction log store.
Uses aiosqlite for fully async, non-blocking access.
"""
import aiosqlite
import asyncio
import logging
from pathlib import Path

from agentcore.config import DB_PATH

logger = logging.getLogger(__name__)

# Module-level shared connection (single connection with WAL mode)
_db: aiosqlite.Connection | None = None
_lock = asyncio.Lock()


async def get_db() -> aiosqlite.Connection:
    """Return the shared async database connection, initializing it if needed."""
    global _db
    if _db is None:
        async with _lock:
            if _db is None:
                if DB_PATH != ":memory:":
                    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
                _db = await aiosqlite.connect(DB_PATH)
                _db.row_factory = aiosqlite.Row
                # WAL mode: allows concurrent reads while the log writer appends
                await _db.execute("PRAGMA journal_mode=WAL")
                await init_schema(_db)
                logger.info(f"Interaction store initialized at {DB_PATH}")
    return _db


async def close_db() -> None:
    """Gracefully close the database connection."""
    global _db
    if _db is not None:
        await _db.close()
        _db = None
        logger.info("Interaction store connection closed.")


async def init_schema(db: aiosqlite.Connection) -> None:
    """Create all tables if they do not already exist (idempotent)."""
    await db.executescript("""
        -- ----------------------------------------------------------------
        -- ai_interactions: append-only (agent, input, output, timestamp) log
        -- ----------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS ai_interactions (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            agent_type  TEXT NOT NULL,
            operation   TEXT NOT NULL DEFAULT 'query',
            input       TEXT NOT NULL,
            output      TEXT NOT NULL,
            request_id  TEXT,
            user_id     TEXT,
            created_at  TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_interactions_agent_created
            ON ai_interactions(agent_type, created_at);
    """)
    await db.commit()
    logger.info("Schema initialized.")
