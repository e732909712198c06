"""Task progress aggregation.

A task's ``progress`` and ``status`` are derived from its items and stored on
the task row. Both functions here write that row and must run inside the
same transaction as the item change that triggered them.
"""

from __future__ import annotations

import logging
from datetime import datetime

import aiosqlite

from ..db.database import timestamp
from .models import TaskStatus

logger = logging.getLogger(__name__)


def compute_progress(done: int, total: int) -> int:
    """Percentage of terminal items, rounded half up. 0 for an empty task.

    Only a task whose items are all terminal reports 100; 199 of 200 stays
    at 99 instead of rounding up.
    """
    if total <= 0:
        return 0
    # Integer form of floor(100 * done / total + 0.5).
    progress = (200 * done + total) // (2 * total)
    if done < total:
        return min(progress, 99)
    return progress


async def count_items(db: aiosqlite.Connection, task_id: str) -> tuple[int, int]:
    """Return (terminal, total) over both item tables of a task."""
    cursor = await db.execute(
        """SELECT COUNT(*) AS total, COALESCE(SUM(done), 0) AS done FROM (
               SELECT completed AS done FROM task_items WHERE task_id = ?
               UNION ALL
               SELECT status IN ('Completed', 'Skipped') AS done
               FROM pid_work_items WHERE task_id = ?
           )""",
        (task_id, task_id),
    )
    row = await cursor.fetchone()
    return row["done"], row["total"]


async def touch_task(db: aiosqlite.Connection, task_id: str, now: datetime | None = None) -> bool:
    """First-touch transition Assigned -> In Progress. Returns True if it moved."""
    cursor = await db.execute(
        """UPDATE tasks SET status = ?, updated_at = ?
           WHERE id = ? AND status = ?""",
        (TaskStatus.IN_PROGRESS, timestamp(now), task_id, TaskStatus.ASSIGNED),
    )
    if cursor.rowcount:
        logger.info("Task %s moved to In Progress", task_id)
    return cursor.rowcount > 0


async def recompute_task_progress(
    db: aiosqlite.Connection, task_id: str, now: datetime | None = None
) -> dict:
    """Store the task's progress and auto-complete it at 100%."""
    done, total = await count_items(db, task_id)
    progress = compute_progress(done, total)
    ts = timestamp(now)

    await db.execute(
        "UPDATE tasks SET progress = ?, updated_at = ? WHERE id = ?",
        (progress, ts, task_id),
    )

    just_completed = False
    if progress == 100:
        cursor = await db.execute(
            """UPDATE tasks SET status = ?, completed_at = ?, updated_at = ?
               WHERE id = ? AND status != ?""",
            (TaskStatus.COMPLETED, ts, ts, task_id, TaskStatus.COMPLETED),
        )
        just_completed = cursor.rowcount > 0
        if just_completed:
            logger.info("Task %s auto-completed (%d/%d items)", task_id, done, total)

    cursor = await db.execute("SELECT status FROM tasks WHERE id = ?", (task_id,))
    row = await cursor.fetchone()
    return {
        "progress": progress,
        "status": row["status"] if row else None,
        "completed": done,
        "total": total,
        "just_completed": just_completed,
    }
