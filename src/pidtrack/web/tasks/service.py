"""Task service - explicit-item assignment and the generic work-item lifecycle.

Every mutation runs as one transaction: the item change, the task's derived
progress/status, the metrics increment and the audit entry commit together
or not at all. Events are published only after the commit.
"""

from __future__ import annotations

import logging
import secrets
from datetime import UTC, datetime

import aiosqlite

from ..audit import service as audit
from ..db.database import savepoint, timestamp, transaction
from ..errors import ConflictError, NotFoundError, ValidationError
from ..events import Event, EventType, event_manager
from ..metrics import service as metrics
from ..registry import service as registry
from ..registry.models import ItemType
from .models import TaskStatus, TaskType
from .progress import count_items, recompute_task_progress, touch_task

logger = logging.getLogger(__name__)


async def get_task(db: aiosqlite.Connection, task_id: str) -> dict | None:
    cursor = await db.execute(
        """SELECT t.*, u.name AS assignee_name
           FROM tasks t LEFT JOIN users u ON t.assignee_id = u.id
           WHERE t.id = ?""",
        (task_id,),
    )
    row = await cursor.fetchone()
    if not row:
        return None
    task = dict(row)
    task["items"] = await list_task_items(db, task_id)
    task["lines"] = await list_task_lines(db, task_id)
    return task


async def list_task_items(db: aiosqlite.Connection, task_id: str) -> list[dict]:
    cursor = await db.execute(
        """SELECT id, task_id, item_id, item_type, name, completed, completed_at, blocks
           FROM task_items WHERE task_id = ?
           ORDER BY created_at, rowid""",
        (task_id,),
    )
    return [dict(r) for r in await cursor.fetchall()]


async def list_task_lines(db: aiosqlite.Connection, task_id: str) -> list[dict]:
    cursor = await db.execute(
        """SELECT tl.id, tl.task_id, tl.task_item_id, tl.line_id, l.line_number,
                  tl.completed, tl.completed_at, tl.blocks
           FROM task_lines tl JOIN lines l ON tl.line_id = l.id
           WHERE tl.task_id = ?
           ORDER BY l.line_number""",
        (task_id,),
    )
    return [dict(r) for r in await cursor.fetchall()]


async def list_tasks(
    db: aiosqlite.Connection,
    assignee_id: str | None = None,
    project_id: str | None = None,
    status: str | None = None,
) -> list[dict]:
    conditions = []
    params: list[str] = []
    if assignee_id:
        conditions.append("t.assignee_id = ?")
        params.append(assignee_id)
    if project_id:
        conditions.append("t.project_id = ?")
        params.append(project_id)
    if status:
        conditions.append("t.status = ?")
        params.append(status)
    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

    cursor = await db.execute(
        f"""SELECT t.*, u.name AS assignee_name
            FROM tasks t LEFT JOIN users u ON t.assignee_id = u.id
            {where}
            ORDER BY t.created_at DESC, t.rowid DESC""",
        params,
    )
    return [dict(r) for r in await cursor.fetchall()]


async def _require_task(db: aiosqlite.Connection, task_id: str) -> dict:
    cursor = await db.execute("SELECT * FROM tasks WHERE id = ?", (task_id,))
    row = await cursor.fetchone()
    if not row:
        raise NotFoundError(f"Task {task_id} not found")
    return dict(row)


async def _validate_items(
    db: aiosqlite.Connection, task_type: str, items: list[dict], project_id: str
) -> list[dict]:
    if not items and task_type != TaskType.MISC:
        raise ValidationError(f"A {task_type} task needs at least one item")

    cleaned = []
    for item in items:
        item_type = item.get("type") or item.get("item_type") or ""
        if item_type not in ItemType.__members__.values():
            raise ValidationError(f"Unknown item type: {item_type!r}")
        name = (item.get("name") or "").strip()
        if not name:
            raise ValidationError("Every item needs a name")
        item_id = item.get("item_id") or ""
        if item_id and not await registry.entity_in_project(db, item_type, item_id, project_id):
            raise ValidationError(
                f"{item_type} {item_id} does not belong to project {project_id}"
            )
        cleaned.append({"item_id": item_id, "item_type": item_type, "name": name})
    return cleaned


async def create_task(
    db: aiosqlite.Connection,
    task_type: str,
    assignee_id: str,
    project_id: str,
    items: list[dict],
    created_by: str | None,
    is_complex: bool = False,
    description: str = "",
    now: datetime | None = None,
) -> dict:
    """Create a task with one work item per supplied item.

    All checks run before the first write. If any item insert fails the
    whole batch is rolled back and no task is left behind.
    """
    if task_type not in TaskType.__members__.values():
        raise ValidationError(f"Unknown task type: {task_type!r}")
    description = (description or "").strip()
    if task_type == TaskType.MISC and not description:
        raise ValidationError("Misc tasks need a description")

    assignee = await registry.get_user(db, assignee_id)
    if assignee is None:
        raise NotFoundError(f"User {assignee_id} not found")
    if await registry.get_project(db, project_id) is None:
        raise NotFoundError(f"Project {project_id} not found")

    cleaned = await _validate_items(db, task_type, items, project_id)

    task_id = secrets.token_hex(8)
    ts = timestamp(now)
    async with transaction(db):
        await db.execute(
            """INSERT INTO tasks (id, task_type, assignee_id, project_id, status, is_complex,
                   is_pid_based, progress, description, created_by, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, 0, 0, ?, ?, ?, ?)""",
            (
                task_id,
                task_type,
                assignee_id,
                project_id,
                TaskStatus.ASSIGNED,
                int(is_complex),
                description,
                created_by,
                ts,
                ts,
            ),
        )
        line_count = 0
        for item in cleaned:
            task_item_id = secrets.token_hex(8)
            await db.execute(
                """INSERT INTO task_items (id, task_id, item_id, item_type, name, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (task_item_id, task_id, item["item_id"], item["item_type"], item["name"], ts),
            )
            # A Redline P&ID is marked up line by line.
            expands = task_type == TaskType.REDLINE and item["item_type"] == ItemType.PID
            if expands and item["item_id"]:
                for line in await registry.list_pid_lines(db, item["item_id"]):
                    await db.execute(
                        """INSERT INTO task_lines (id, task_id, task_item_id, line_id, created_at)
                           VALUES (?, ?, ?, ?, ?)""",
                        (secrets.token_hex(8), task_id, task_item_id, line["id"], ts),
                    )
                    line_count += 1
        await audit.record(
            db,
            audit.TASK_ASSIGNMENT,
            f"{task_type} task",
            created_by,
            f"Assigned {len(cleaned)} item(s) to {assignee['name']}",
        )

    logger.info(
        "Created %s task %s for %s with %d item(s), %d line(s)",
        task_type,
        task_id,
        assignee_id,
        len(cleaned),
        line_count,
    )
    task = await get_task(db, task_id)
    await event_manager.publish_task(task, EventType.TASK_CREATED)
    return task


async def _record_completion(db: aiosqlite.Connection, task: dict, progress: dict) -> None:
    if progress["just_completed"]:
        await audit.record(
            db,
            audit.TASK_COMPLETION,
            f"{task['task_type']} task",
            task["assignee_id"],
            f"Task {task['id']} completed ({progress['total']} item(s))",
        )


async def _count_metric(
    db: aiosqlite.Connection,
    task: dict,
    item_type: str,
    entity_id: str,
    blocks: int,
    now: datetime,
) -> None:
    try:
        async with savepoint(db, "task_item_metrics"):
            await metrics.increment(
                db,
                task["assignee_id"],
                item_type,
                task["task_type"],
                now.astimezone(UTC).date(),
                blocks=blocks,
                entity_id=await metrics.metric_entity(db, item_type, entity_id),
            )
    except aiosqlite.Error:
        logger.warning(
            "Metrics not recorded for %s %s on task %s",
            item_type,
            entity_id,
            task["id"],
            exc_info=True,
        )


async def complete_task_item(
    db: aiosqlite.Connection,
    task_id: str,
    item_id: str,
    blocks: int,
    now: datetime | None = None,
) -> dict:
    """Mark one generic work item done and roll the change into its task.

    Completing an item that is already done changes nothing. A P&ID item
    with lines to mark up completes with its last line instead, see
    :func:`complete_task_line`.
    """
    if blocks is None or blocks <= 0:
        raise ValidationError("blocks must be greater than 0 to complete an item")

    task = await _require_task(db, task_id)
    cursor = await db.execute(
        "SELECT * FROM task_items WHERE id = ? AND task_id = ?", (item_id, task_id)
    )
    item = await cursor.fetchone()
    if not item:
        raise NotFoundError(f"Item {item_id} not found in task {task_id}")
    if item["completed"]:
        return await get_task(db, task_id)

    now = now or datetime.now(UTC)
    ts = timestamp(now)
    async with transaction(db):
        cursor = await db.execute(
            "SELECT COUNT(*) FROM task_lines WHERE task_item_id = ? AND completed = 0",
            (item_id,),
        )
        open_lines = (await cursor.fetchone())[0]
        if open_lines:
            raise ConflictError(
                f"Item {item['name']} still has {open_lines} line(s) to complete",
                code="LINES_INCOMPLETE",
                open_lines=open_lines,
            )

        cursor = await db.execute(
            """UPDATE task_items SET completed = 1, completed_at = ?, blocks = ?
               WHERE id = ? AND completed = 0""",
            (ts, blocks, item_id),
        )
        if cursor.rowcount == 0:
            # Lost the race to a concurrent completion of the same item.
            return await get_task(db, task_id)

        await touch_task(db, task_id, now)
        await _count_metric(db, task, item["item_type"], item["item_id"], blocks, now)
        progress = await recompute_task_progress(db, task_id, now)
        await _record_completion(db, task, progress)

    task = await get_task(db, task_id)
    await event_manager.publish_task(task, EventType.TASK_UPDATED)
    return task


async def complete_task_line(
    db: aiosqlite.Connection,
    task_id: str,
    line_row_id: str,
    blocks: int,
    now: datetime | None = None,
) -> dict:
    """Mark one line of a Redline P&ID item done.

    Each line counts as a Line completion in the metrics. When the last
    line is done the P&ID item completes too, carrying the summed blocks,
    and the task's progress moves with it.
    """
    if blocks is None or blocks <= 0:
        raise ValidationError("blocks must be greater than 0 to complete a line")

    task = await _require_task(db, task_id)
    cursor = await db.execute(
        "SELECT * FROM task_lines WHERE id = ? AND task_id = ?", (line_row_id, task_id)
    )
    line = await cursor.fetchone()
    if not line:
        raise NotFoundError(f"Line {line_row_id} not found in task {task_id}")
    if line["completed"]:
        return await get_task(db, task_id)

    now = now or datetime.now(UTC)
    ts = timestamp(now)
    parent_id = line["task_item_id"]
    async with transaction(db):
        cursor = await db.execute(
            """UPDATE task_lines SET completed = 1, completed_at = ?, blocks = ?
               WHERE id = ? AND completed = 0""",
            (ts, blocks, line_row_id),
        )
        if cursor.rowcount == 0:
            return await get_task(db, task_id)

        await touch_task(db, task_id, now)
        await _count_metric(db, task, ItemType.LINE, line["line_id"], blocks, now)

        cursor = await db.execute(
            """UPDATE task_items
               SET completed = 1, completed_at = ?,
                   blocks = (SELECT COALESCE(SUM(blocks), 0) FROM task_lines
                             WHERE task_item_id = ?)
               WHERE id = ? AND completed = 0
                 AND NOT EXISTS (SELECT 1 FROM task_lines
                                 WHERE task_item_id = ? AND completed = 0)""",
            (ts, parent_id, parent_id, parent_id),
        )
        if cursor.rowcount:
            logger.info("P&ID item %s on task %s completed by its last line", parent_id, task_id)

        progress = await recompute_task_progress(db, task_id, now)
        await _record_completion(db, task, progress)

    task = await get_task(db, task_id)
    await event_manager.publish_task(task, EventType.TASK_UPDATED)
    return task


async def update_task_status(
    db: aiosqlite.Connection, task_id: str, status: str, now: datetime | None = None
) -> dict:
    """Explicit status change requested by a user.

    Only forward moves are accepted. A task can be completed by hand only
    once all of its items are done; a task without items (Misc) can be
    completed at any time and is then reported at 100%.
    """
    if status not in TaskStatus.__members__.values():
        raise ValidationError(f"Unknown task status: {status!r}")

    ts = timestamp(now)
    async with transaction(db):
        task = await _require_task(db, task_id)
        current = task["status"]
        if current == TaskStatus.COMPLETED:
            raise ConflictError(
                f"Task {task_id} is already completed", code="TASK_ALREADY_COMPLETED"
            )
        if status == current:
            return await get_task(db, task_id)
        if status == TaskStatus.ASSIGNED:
            raise ConflictError(
                f"Task {task_id} cannot move back to Assigned", code="INVALID_TRANSITION"
            )

        if status == TaskStatus.IN_PROGRESS:
            await touch_task(db, task_id, now)
        else:
            done, total = await count_items(db, task_id)
            if done < total:
                raise ConflictError(
                    f"Task {task_id} still has {total - done} open item(s)",
                    code="INVALID_TRANSITION",
                )
            cursor = await db.execute(
                """UPDATE tasks SET status = ?, progress = 100, completed_at = ?, updated_at = ?
                   WHERE id = ? AND status != ?""",
                (TaskStatus.COMPLETED, ts, ts, task_id, TaskStatus.COMPLETED),
            )
            if cursor.rowcount == 0:
                raise ConflictError(
                    f"Task {task_id} is already completed", code="TASK_ALREADY_COMPLETED"
                )
            await audit.record(
                db,
                audit.TASK_COMPLETION,
                f"{task['task_type']} task",
                task["assignee_id"],
                f"Task {task_id} completed by status change",
            )

    task = await get_task(db, task_id)
    await event_manager.publish_task(task, EventType.TASK_UPDATED)
    return task


async def status_counts(
    db: aiosqlite.Connection, project_id: str | None = None, assignee_id: str | None = None
) -> dict:
    conditions = []
    params: list[str] = []
    if project_id:
        conditions.append("project_id = ?")
        params.append(project_id)
    if assignee_id:
        conditions.append("assignee_id = ?")
        params.append(assignee_id)
    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

    cursor = await db.execute(
        f"SELECT status, COUNT(*) AS n FROM tasks {where} GROUP BY status", params
    )
    by_status = {row["status"]: row["n"] for row in await cursor.fetchall()}
    return {
        "assigned": by_status.get(TaskStatus.ASSIGNED, 0),
        "inProgress": by_status.get(TaskStatus.IN_PROGRESS, 0),
        "completed": by_status.get(TaskStatus.COMPLETED, 0),
    }


async def get_block_count(db: aiosqlite.Connection, item_type: str, item_id: str) -> dict:
    """Blocks reported by the most recent completion of a registry entity."""
    cursor = await db.execute(
        """SELECT ti.blocks, ti.completed_at, u.name AS completed_by_name
           FROM task_items ti
           JOIN tasks t ON ti.task_id = t.id
           LEFT JOIN users u ON t.assignee_id = u.id
           WHERE ti.item_type = ? AND ti.item_id = ? AND ti.completed = 1
           ORDER BY ti.completed_at DESC, ti.rowid DESC
           LIMIT 1""",
        (item_type, item_id),
    )
    row = await cursor.fetchone()
    if not row:
        return {"blocks": 0, "completed": False, "completed_by_name": None, "completed_at": None}
    return {
        "blocks": row["blocks"],
        "completed": True,
        "completed_by_name": row["completed_by_name"],
        "completed_at": row["completed_at"],
    }


# --- Comments ---


async def list_comments(db: aiosqlite.Connection, task_id: str) -> list[dict]:
    cursor = await db.execute(
        "SELECT * FROM task_comments WHERE task_id = ? ORDER BY created_at, rowid",
        (task_id,),
    )
    return [dict(r) for r in await cursor.fetchall()]


async def add_comment(db: aiosqlite.Connection, task_id: str, user: dict, comment: str) -> dict:
    comment = (comment or "").strip()
    if not comment:
        raise ValidationError("Comment cannot be empty")
    task = await _require_task(db, task_id)

    comment_id = secrets.token_hex(8)
    await db.execute(
        """INSERT INTO task_comments (id, task_id, user_id, user_name, user_role, comment, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (comment_id, task_id, user["sub"], user["name"], user["role"], comment, timestamp()),
    )

    cursor = await db.execute("SELECT * FROM task_comments WHERE id = ?", (comment_id,))
    row = dict(await cursor.fetchone())
    await event_manager.publish_to_project(
        task["project_id"], Event(event_type=EventType.COMMENT_ADDED, data=row)
    )
    return row
