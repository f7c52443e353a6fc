"""
CRUD operations for the interaction log store.
All functions are async and receive the aiosqlite connection from the caller.
"""
import json
import logging
import time
from datetime import datetime, timezone, timedelta
from typing import Any, Optional

import aiosqlite

from agentcore.db.models import Interaction

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_dt(s: str) -> datetime:
    return datetime.fromisoformat(s)


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def _loads(value: Optional[str]) -> Any:
    if value is None:
        return None
    try:
        return json.loads(value)
    except ValueError:
        return value


# ─────────────────────────────────────────────
# Interaction log
# ─────────────────────────────────────────────

async def interaction_append(db: aiosqlite.Connection, item: Interaction) -> int:
    """Insert one interaction row and return its id."""
    async with db.execute(
        "INSERT INTO ai_interactions (agent_type, operation, input, output, created_at, request_id, user_id) "
        "VALUES (?, ?, ?, ?, ?, ?, ?)",
        (
            item.agent_type,
            item.operation,
            _dumps(item.input),
            _dumps(item.output),
            item.created_at.isoformat(),
            item.request_id,
            item.user_id,
        ),
    ) as cur:
        row_id = cur.lastrowid
    await db.commit()
    logger.debug(f"Interaction logged: id={row_id} agent={item.agent_type} op={item.operation}")
    return row_id


async def interaction_list(
    db: aiosqlite.Connection,
    agent_type: Optional[str] = None,
    limit: int = 50,
) -> list[Interaction]:
    """Most recent interactions first, optionally filtered by agent type."""
    if agent_type:
        async with db.execute(
            "SELECT * FROM ai_interactions WHERE agent_type = ? ORDER BY id DESC LIMIT ?",
            (agent_type, limit),
        ) as cur:
            rows = await cur.fetchall()
    else:
        async with db.execute("SELECT * FROM ai_interactions ORDER BY id DESC LIMIT ?", (limit,)) as cur:
            rows = await cur.fetchall()
    return [_row_to_interaction(r) for r in rows]


async def interactions_prune(db: aiosqlite.Connection, max_age_days: int) -> int:
    """Delete interactions older than max_age_days. Returns the number removed."""
    cutoff = (datetime.now(timezone.utc) - timedelta(days=max_age_days)).isoformat()
    async with db.execute("DELETE FROM ai_interactions WHERE created_at < ?", (cutoff,)) as cur:
        deleted = cur.rowcount
    await db.commit()
    if deleted > 0:
        logger.info(f"Pruned {deleted} interactions older than {max_age_days} days.")
    return deleted


def _row_to_interaction(row: aiosqlite.Row) -> Interaction:
    return Interaction(
        id=row["id"],
        agent_type=row["agent_type"],
        operation=row["operation"],
        input=_loads(row["input"]),
        output=_loads(row["output"]),
        created_at=_parse_dt(row["created_at"]),
        request_id=row["request_id"],
        user_id=row["user_id"],
    )


# ─────────────────────────────────────────────
# Health probe
# ─────────────────────────────────────────────

async def store_health(db: aiosqlite.Connection) -> dict:
    """Round-trip the store and report connectivity, latency and row count."""
    started = time.perf_counter()
    async with db.execute("SELECT 1 AS ok") as cur:
        await cur.fetchone()
    async with db.execute("SELECT COUNT(*) AS cnt FROM ai_interactions") as cur:
        row = await cur.fetchone()
    async with db.execute("SELECT sqlite_version() AS v") as cur:
        version = (await cur.fetchone())["v"]
    return {
        "connected": True,
        "responseTime": round((time.perf_counter() - started) * 1000, 3),
        "version": version,
        "interactions": row["cnt"],
        "checkedAt": _now(),
    }
