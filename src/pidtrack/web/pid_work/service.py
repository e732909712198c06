"""PID work service - P&ID-based assignment and the work-item state machine.

A P&ID is handed to one user per task type. Assigning it creates one
``pid_work_items`` row per line and equipment item drawn on it, folded into
the user's most recent task when that task was created within the reuse
window. Items then move ``Pending -> In Progress -> Completed | Skipped``;
every move recomputes the owning task's progress in the same transaction.
"""

from __future__ import annotations

import logging
import secrets
from datetime import UTC, date, datetime, timedelta

import aiosqlite

from ..audit import service as audit
from ..db.database import savepoint, timestamp, transaction
from ..errors import ConflictError, NotFoundError, ValidationError
from ..events import Event, EventType, event_manager
from ..metrics import service as metrics
from ..registry import service as registry
from ..registry.models import ItemType
from ..tasks import service as tasks
from ..tasks.models import TaskStatus, TaskType
from ..tasks.progress import recompute_task_progress, touch_task
from .models import TERMINAL_STATUSES, PidItemStatus

logger = logging.getLogger(__name__)

DEFAULT_SKIP_REMARKS = "Skipped – data missing"

# Task types that can be handed out P&ID by P&ID.
PID_TASK_TYPES = (TaskType.REDLINE, TaskType.UPV, TaskType.QC)

# current status -> statuses it may move to
_TRANSITIONS: dict[str, tuple[str, ...]] = {
    PidItemStatus.PENDING: (
        PidItemStatus.PENDING,
        PidItemStatus.IN_PROGRESS,
        PidItemStatus.COMPLETED,
        PidItemStatus.SKIPPED,
    ),
    PidItemStatus.IN_PROGRESS: (
        PidItemStatus.IN_PROGRESS,
        PidItemStatus.COMPLETED,
        PidItemStatus.SKIPPED,
    ),
}


# --- Assignment ---


async def _current_assignee(
    db: aiosqlite.Connection, pid_id: str, task_type: str, user_id: str
) -> dict | None:
    """Someone other than ``user_id`` already holding this P&ID for the task type."""
    cursor = await db.execute(
        """SELECT pwi.user_id, u.name AS user_name, pwi.task_id
           FROM pid_work_items pwi
           JOIN users u ON pwi.user_id = u.id
           WHERE pwi.pid_id = ? AND pwi.task_type = ? AND pwi.user_id != ?
           LIMIT 1""",
        (pid_id, task_type, user_id),
    )
    row = await cursor.fetchone()
    return dict(row) if row else None


async def _reusable_task(
    db: aiosqlite.Connection,
    user_id: str,
    task_type: str,
    project_id: str,
    since: datetime,
) -> str | None:
    """Newest untouched task to fold a new P&ID into.

    A task with any terminal item is never reused: adding open items to it
    would lower its progress.
    """
    cursor = await db.execute(
        """SELECT id FROM tasks
           WHERE assignee_id = ? AND task_type = ? AND project_id = ?
             AND status = ? AND is_pid_based = 1 AND created_at >= ? AND progress = 0
             AND NOT EXISTS (
                 SELECT 1 FROM pid_work_items pwi
                 WHERE pwi.task_id = tasks.id AND pwi.status IN ('Completed', 'Skipped')
             )
           ORDER BY created_at DESC, rowid DESC
           LIMIT 1""",
        (user_id, task_type, project_id, TaskStatus.ASSIGNED, timestamp(since)),
    )
    row = await cursor.fetchone()
    return row["id"] if row else None


async def _held_keys(
    db: aiosqlite.Connection, pid_id: str, user_id: str, task_type: str
) -> set[tuple[str, str]]:
    """(line_id, equipment_id) pairs the user already holds on this P&ID, in any task."""
    cursor = await db.execute(
        """SELECT COALESCE(line_id, '') AS line_id, COALESCE(equipment_id, '') AS equipment_id
           FROM pid_work_items
           WHERE pid_id = ? AND user_id = ? AND task_type = ?""",
        (pid_id, user_id, task_type),
    )
    return {(r["line_id"], r["equipment_id"]) for r in await cursor.fetchall()}


async def assign_pid(
    db: aiosqlite.Connection,
    pid_id: str,
    user_id: str,
    task_type: str,
    project_id: str,
    actor_id: str | None = None,
    now: datetime | None = None,
    reuse_window_minutes: int = 5,
) -> dict:
    """Hand every line and equipment item of a P&ID to one user.

    Raises ConflictError with code ``PID_ALREADY_ASSIGNED`` (and the current
    holder's name as ``assigned_to``) when another user holds the P&ID for
    this task type, and ``NO_ITEMS_CREATED`` when every item was already
    assigned. Either way nothing is written.
    """
    if task_type not in PID_TASK_TYPES:
        raise ValidationError(f"Task type {task_type!r} cannot be assigned by P&ID")

    user = await registry.get_user(db, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    if await registry.get_project(db, project_id) is None:
        raise NotFoundError(f"Project {project_id} not found")
    pid = await registry.get_pid(db, pid_id)
    if pid is None:
        raise NotFoundError(f"P&ID {pid_id} not found")
    if pid["project_id"] != project_id:
        raise ValidationError(f"P&ID {pid['pid_number']} does not belong to project {project_id}")

    pid_items = await registry.list_pid_items(db, pid_id)
    if not pid_items:
        raise ValidationError(f"P&ID {pid['pid_number']} has no lines or equipment to assign")

    now = now or datetime.now(UTC)
    ts = timestamp(now)
    created: list[dict] = []
    async with transaction(db):
        holder = await _current_assignee(db, pid_id, task_type, user_id)
        if holder:
            raise ConflictError(
                f"P&ID {pid['pid_number']} is already assigned to {holder['user_name']}",
                code="PID_ALREADY_ASSIGNED",
                assigned_to=holder["user_name"],
            )

        since = now - timedelta(minutes=reuse_window_minutes)
        task_id = await _reusable_task(db, user_id, task_type, project_id, since)
        is_new_task = task_id is None
        if is_new_task:
            task_id = secrets.token_hex(8)
            await db.execute(
                """INSERT INTO tasks (id, task_type, assignee_id, project_id, status, is_complex,
                       is_pid_based, progress, description, created_by, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, 0, 1, 0, ?, ?, ?, ?)""",
                (
                    task_id,
                    task_type,
                    user_id,
                    project_id,
                    TaskStatus.ASSIGNED,
                    f"{task_type} by P&ID",
                    actor_id,
                    ts,
                    ts,
                ),
            )

        held = await _held_keys(db, pid_id, user_id, task_type)
        for item in pid_items:
            if (item["line_id"] or "", item["equipment_id"] or "") in held:
                continue
            work_item_id = secrets.token_hex(8)
            try:
                async with savepoint(db, "pid_work_item"):
                    cursor = await db.execute(
                        """INSERT INTO pid_work_items (id, pid_id, line_id, equipment_id, user_id,
                               task_id, task_type, status, created_at, updated_at)
                           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                           ON CONFLICT DO NOTHING""",
                        (
                            work_item_id,
                            pid_id,
                            item["line_id"],
                            item["equipment_id"],
                            user_id,
                            task_id,
                            task_type,
                            PidItemStatus.PENDING,
                            ts,
                            ts,
                        ),
                    )
            except aiosqlite.Error:
                logger.warning(
                    "Skipping %s %s on P&ID %s",
                    item["item_type"],
                    item["item_name"],
                    pid_id,
                    exc_info=True,
                )
                continue
            if cursor.rowcount:
                created.append(
                    {
                        "id": work_item_id,
                        "line_id": item["line_id"],
                        "equipment_id": item["equipment_id"],
                        "item_name": item["item_name"],
                    }
                )

        if not created:
            raise ConflictError(
                f"No work items created for P&ID {pid['pid_number']}; they may already exist",
                code="NO_ITEMS_CREATED",
            )

        await recompute_task_progress(db, task_id, now)
        await audit.record(
            db,
            audit.PID_ASSIGNMENT,
            f"P&ID {pid['pid_number']}",
            actor_id,
            f"{task_type}: {len(created)} item(s) assigned to {user['name']}",
        )

    logger.info(
        "Assigned P&ID %s (%d item(s)) to %s in %s task %s",
        pid["pid_number"],
        len(created),
        user_id,
        "new" if is_new_task else "existing",
        task_id,
    )

    result = {
        "task_id": task_id,
        "pid_id": pid_id,
        "pid_number": pid["pid_number"],
        "user_id": user_id,
        "task_type": task_type,
        "items_count": len(created),
        "is_new_task": is_new_task,
        "items": created,
    }
    await event_manager.publish_to_project(
        project_id, Event(event_type=EventType.PID_ASSIGNED, data=result)
    )
    task = await tasks.get_task(db, task_id)
    await event_manager.publish_task(
        task, EventType.TASK_CREATED if is_new_task else EventType.TASK_UPDATED
    )
    return result


# --- State machine ---


async def resolve_metric_entity(db: aiosqlite.Connection, item: dict) -> tuple[str, str]:
    """Map a work item to the (entity_id, item_type) its completion is counted under.

    The header row counts under the P&ID; lines and equipment follow
    :func:`metrics.metric_entity`.
    """
    if item.get("line_id"):
        return item["line_id"], ItemType.LINE
    if item.get("equipment_id"):
        entity_id = await metrics.metric_entity(
            db, ItemType.EQUIPMENT, item["equipment_id"], item["pid_id"]
        )
        return entity_id, ItemType.EQUIPMENT
    return item["pid_id"], ItemType.PID


async def get_work_item(db: aiosqlite.Connection, work_item_id: str) -> dict | None:
    cursor = await db.execute("SELECT * FROM pid_work_items WHERE id = ?", (work_item_id,))
    row = await cursor.fetchone()
    return dict(row) if row else None


async def _find_item(
    db: aiosqlite.Connection,
    pid_id: str,
    user_id: str,
    task_type: str,
    line_id: str | None,
    equipment_id: str | None,
) -> dict | None:
    cursor = await db.execute(
        """SELECT pwi.*, t.status AS task_status, t.progress AS task_progress,
                  t.project_id
           FROM pid_work_items pwi
           JOIN tasks t ON pwi.task_id = t.id
           WHERE pwi.pid_id = ? AND pwi.user_id = ? AND pwi.task_type = ?
             AND COALESCE(pwi.line_id, '') = ? AND COALESCE(pwi.equipment_id, '') = ?
           ORDER BY pwi.created_at DESC, pwi.rowid DESC
           LIMIT 1""",
        (pid_id, user_id, task_type, line_id or "", equipment_id or ""),
    )
    row = await cursor.fetchone()
    return dict(row) if row else None


def _item_result(item: dict, task_progress: int, task_status: str) -> dict:
    return {
        "id": item["id"],
        "pid_id": item["pid_id"],
        "line_id": item["line_id"],
        "equipment_id": item["equipment_id"],
        "status": item["status"],
        "blocks": item["blocks"],
        "remarks": item["remarks"],
        "completed_at": item["completed_at"],
        "task_id": item["task_id"],
        "task_progress": task_progress,
        "task_status": task_status,
    }


async def mark_item(
    db: aiosqlite.Connection,
    pid_id: str,
    user_id: str,
    task_type: str,
    status: str,
    line_id: str | None = None,
    equipment_id: str | None = None,
    remarks: str | None = None,
    blocks: int = 0,
    now: datetime | None = None,
) -> dict:
    """Move one work item to ``status`` and roll the change into its task.

    The item is addressed by its natural key. Sending a terminal status the
    item already has returns the item unchanged and counts nothing twice.
    """
    if status not in _TRANSITIONS and status not in TERMINAL_STATUSES:
        raise ValidationError(f"Invalid status: {status!r}")
    if line_id and equipment_id:
        raise ValidationError("Give either line_id or equipment_id, not both")
    blocks = blocks or 0
    if blocks < 0:
        raise ValidationError("blocks cannot be negative")
    if status == PidItemStatus.COMPLETED and blocks <= 0:
        raise ValidationError("blocks must be greater than 0 to complete an item")

    now = now or datetime.now(UTC)
    ts = timestamp(now)
    async with transaction(db):
        item = await _find_item(db, pid_id, user_id, task_type, line_id, equipment_id)
        if item is None:
            raise NotFoundError("Work item not found. It may not be assigned to this user.")

        current = item["status"]
        if current in TERMINAL_STATUSES:
            if status == current:
                return _item_result(item, item["task_progress"], item["task_status"])
            raise ConflictError(
                f"Work item is already {current}",
                code="ITEM_ALREADY_FINAL",
                status=current,
            )
        if status not in _TRANSITIONS[current]:
            raise ConflictError(
                f"Work item cannot move from {current} to {status}",
                code="INVALID_TRANSITION",
            )

        task_id = item["task_id"]
        if status in (PidItemStatus.IN_PROGRESS, PidItemStatus.COMPLETED):
            await touch_task(db, task_id, now)

        completing = status == PidItemStatus.COMPLETED
        await db.execute(
            """UPDATE pid_work_items
               SET status = ?, completed_at = ?, remarks = COALESCE(?, remarks),
                   blocks = ?, updated_at = ?
               WHERE id = ?""",
            (
                status,
                ts if completing else None,
                remarks,
                blocks if completing else item["blocks"],
                ts,
                item["id"],
            ),
        )

        if completing:
            entity_id, item_type = await resolve_metric_entity(db, item)
            try:
                async with savepoint(db, "pid_item_metrics"):
                    await metrics.increment(
                        db,
                        user_id,
                        item_type,
                        task_type,
                        now.astimezone(UTC).date(),
                        blocks=blocks,
                        entity_id=entity_id,
                    )
            except aiosqlite.Error:
                logger.warning("Metrics not recorded for work item %s", item["id"], exc_info=True)

        progress = await recompute_task_progress(db, task_id, now)
        if progress["just_completed"]:
            await audit.record(
                db,
                audit.TASK_COMPLETION,
                f"{task_type} task",
                user_id,
                f"Task {task_id} completed ({progress['total']} item(s))",
            )
        updated = await get_work_item(db, item["id"])

    result = _item_result(updated, progress["progress"], progress["status"])
    await event_manager.publish_to_project(
        item["project_id"], Event(event_type=EventType.WORK_ITEM_UPDATED, data=result)
    )
    task = await tasks.get_task(db, task_id)
    await event_manager.publish_task(task, EventType.TASK_UPDATED)
    return result


async def skip_item(
    db: aiosqlite.Connection,
    work_item_id: str,
    remarks: str | None = None,
    now: datetime | None = None,
) -> dict:
    """Skip a work item by row id, e.g. when its source data is missing."""
    item = await get_work_item(db, work_item_id)
    if item is None:
        raise NotFoundError(f"Work item {work_item_id} not found")
    return await mark_item(
        db,
        pid_id=item["pid_id"],
        user_id=item["user_id"],
        task_type=item["task_type"],
        status=PidItemStatus.SKIPPED,
        line_id=item["line_id"],
        equipment_id=item["equipment_id"],
        remarks=remarks or DEFAULT_SKIP_REMARKS,
        now=now,
    )


# --- Read side ---

_ITEM_COLUMNS = """pwi.id, pwi.pid_id, p.pid_number, pwi.task_type,
                   pwi.line_id, l.line_number, pwi.equipment_id, e.equipment_number,
                   pwi.status, pwi.remarks, pwi.blocks, pwi.completed_at"""

_ITEM_JOINS = """JOIN pids p ON pwi.pid_id = p.id
                 LEFT JOIN lines l ON pwi.line_id = l.id
                 LEFT JOIN equipment e ON pwi.equipment_id = e.id"""


def _item_view(row: dict) -> dict:
    return {
        "id": row["id"],
        "line_id": row["line_id"],
        "line_number": row["line_number"],
        "equipment_id": row["equipment_id"],
        "equipment_number": row["equipment_number"],
        "status": row["status"],
        "remarks": row["remarks"],
        "blocks": row["blocks"] or 0,
        "completed_at": row["completed_at"],
    }


async def assigned_pids(
    db: aiosqlite.Connection,
    user_id: str,
    task_type: str = TaskType.UPV,
    day: date | str | None = None,
) -> list[dict]:
    """A user's work for one task type, grouped per P&ID."""
    params: list[str] = [user_id, task_type]
    date_filter = ""
    if day:
        date_filter = "AND DATE(pwi.created_at) = ?"
        params.append(day if isinstance(day, str) else day.isoformat())

    cursor = await db.execute(
        f"""SELECT {_ITEM_COLUMNS}
            FROM pid_work_items pwi
            {_ITEM_JOINS}
            WHERE pwi.user_id = ? AND pwi.task_type = ? {date_filter}
            ORDER BY p.pid_number, l.line_number IS NULL, l.line_number, e.equipment_number""",
        params,
    )

    groups: dict[str, dict] = {}
    for row in await cursor.fetchall():
        group = groups.setdefault(
            row["pid_id"],
            {
                "pid_id": row["pid_id"],
                "pid_number": row["pid_number"],
                "task_type": row["task_type"],
                "total_items": 0,
                "completed_items": 0,
                "skipped_items": 0,
                "items": [],
            },
        )
        group["items"].append(_item_view(dict(row)))
        group["total_items"] += 1
        if row["status"] == PidItemStatus.COMPLETED:
            group["completed_items"] += 1
        elif row["status"] == PidItemStatus.SKIPPED:
            group["skipped_items"] += 1
    return list(groups.values())


async def task_hierarchy(db: aiosqlite.Connection, task_id: str) -> list[dict]:
    """Items of one task grouped per P&ID, with a done flag per group."""
    if await tasks.get_task(db, task_id) is None:
        raise NotFoundError(f"Task {task_id} not found")

    cursor = await db.execute(
        f"""SELECT {_ITEM_COLUMNS}
            FROM pid_work_items pwi
            {_ITEM_JOINS}
            WHERE pwi.task_id = ?
            ORDER BY p.pid_number, l.line_number IS NULL, l.line_number, e.equipment_number""",
        (task_id,),
    )

    groups: dict[str, dict] = {}
    for row in await cursor.fetchall():
        group = groups.setdefault(
            row["pid_id"],
            {
                "pid_id": row["pid_id"],
                "pid_number": row["pid_number"],
                "items": [],
                "completed_count": 0,
                "total_count": 0,
                "all_completed": True,
            },
        )
        group["items"].append(_item_view(dict(row)))
        group["total_count"] += 1
        if row["status"] in TERMINAL_STATUSES:
            group["completed_count"] += 1
        else:
            group["all_completed"] = False
    return list(groups.values())


async def pid_summary(db: aiosqlite.Connection) -> list[dict]:
    """One row per (user, P&ID, task type) with a status derived from its items."""
    cursor = await db.execute(
        """SELECT u.id AS user_id, u.name AS user_name, p.id AS pid_id, p.pid_number,
                  pwi.task_type,
                  MIN(pwi.created_at) AS assigned_date,
                  CASE
                      WHEN COUNT(*) = SUM(pwi.status IN ('Completed', 'Skipped')) THEN 'Completed'
                      WHEN SUM(pwi.status = 'In Progress') > 0 THEN 'In Progress'
                      ELSE 'Pending'
                  END AS status,
                  COUNT(*) AS total_items,
                  SUM(pwi.status = 'Completed') AS completed_items,
                  SUM(pwi.status = 'Skipped') AS skipped_items,
                  SUM(COALESCE(pwi.blocks, 0)) AS total_blocks,
                  MAX(CASE WHEN pwi.status = 'Completed' THEN pwi.completed_at END)
                      AS completion_date
           FROM pid_work_items pwi
           JOIN users u ON pwi.user_id = u.id
           JOIN pids p ON pwi.pid_id = p.id
           GROUP BY u.id, u.name, p.id, p.pid_number, pwi.task_type
           ORDER BY u.name, p.pid_number, pwi.task_type"""
    )
    return [dict(r) for r in await cursor.fetchall()]


def _split_ids(value: str | None) -> list[str]:
    return sorted(value.split(",")) if value else []


async def completion_summary(
    db: aiosqlite.Connection, day: date | str, task_type: str = TaskType.UPV
) -> dict:
    """Per-user completions on one day: distinct P&IDs, lines, equipment and blocks."""
    day_str = day if isinstance(day, str) else day.isoformat()
    cursor = await db.execute(
        """SELECT u.id AS user_id, u.name AS user_name,
                  COUNT(DISTINCT pwi.pid_id) AS pids_completed,
                  COUNT(DISTINCT pwi.line_id) AS lines_completed,
                  COUNT(DISTINCT pwi.equipment_id) AS equipment_completed,
                  GROUP_CONCAT(DISTINCT pwi.line_id) AS line_ids,
                  GROUP_CONCAT(DISTINCT pwi.equipment_id) AS equipment_ids,
                  COALESCE(SUM(pwi.blocks), 0) AS total_blocks
           FROM pid_work_items pwi
           JOIN users u ON pwi.user_id = u.id
           WHERE pwi.task_type = ? AND pwi.status = 'Completed'
             AND DATE(pwi.completed_at) = ?
           GROUP BY u.id, u.name
           ORDER BY u.name""",
        (task_type, day_str),
    )
    data = []
    for row in await cursor.fetchall():
        entry = dict(row)
        entry["line_ids"] = _split_ids(entry["line_ids"])
        entry["equipment_ids"] = _split_ids(entry["equipment_ids"])
        data.append(entry)
    return {"date": day_str, "task_type": task_type, "data": data}
