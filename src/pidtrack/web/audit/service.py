"""Audit log - best-effort append of creation and completion events."""

from __future__ import annotations

import logging
import secrets

import aiosqlite

from ..db.database import savepoint, timestamp

logger = logging.getLogger(__name__)

TASK_ASSIGNMENT = "Task Assignment"
PID_ASSIGNMENT = "PID Assignment"
TASK_COMPLETION = "Task Completion"


async def record(
    db: aiosqlite.Connection,
    entry_type: str,
    name: str,
    actor_id: str | None,
    description: str = "",
) -> str | None:
    """Append an audit entry. Returns its id, or None if the write failed.

    Runs inside the caller's transaction under a savepoint; a failed append
    never aborts the mutation that triggered it.
    """
    entry_id = secrets.token_hex(8)
    try:
        async with savepoint(db, "audit_record"):
            await db.execute(
                """INSERT INTO audit_logs (id, type, name, actor_id, description, timestamp)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (entry_id, entry_type, name, actor_id, description, timestamp()),
            )
    except aiosqlite.Error:
        logger.warning("Audit entry %r for %r not written", entry_type, name, exc_info=True)
        return None
    return entry_id


async def list_entries(db: aiosqlite.Connection, limit: int = 100) -> list[dict]:
    cursor = await db.execute(
        """SELECT a.*, u.name AS actor_name
           FROM audit_logs a LEFT JOIN users u ON a.actor_id = u.id
           ORDER BY a.timestamp DESC, a.rowid DESC
           LIMIT ?""",
        (limit,),
    )
    return [dict(r) for r in await cursor.fetchall()]
