"""Metrics ledger - per-user daily completion counters.

Only daily rows are stored. Weekly and monthly figures are sums over the
trailing 7 and 30 days, computed on read.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date, timedelta

import aiosqlite

from ..db.database import timestamp
from ..registry import service as registry
from ..registry.models import ItemType

WEEK_DAYS = 7
MONTH_DAYS = 30


def _as_date(day: date | str) -> date:
    return day if isinstance(day, date) else date.fromisoformat(day)


async def increment(
    db: aiosqlite.Connection,
    user_id: str,
    item_type: str,
    task_type: str,
    day: date | str,
    blocks: int = 0,
    entity_id: str = "",
) -> None:
    """Count one completion (and its blocks) in the user's bucket for ``day``.

    A single upsert statement, so concurrent completions landing in the same
    bucket cannot lose updates. Joins the caller's transaction if one is open.
    """
    await db.execute(
        """INSERT INTO daily_metrics
               (user_id, entity_id, item_type, task_type, date, count, blocks, updated_at)
           VALUES (?, ?, ?, ?, ?, 1, ?, ?)
           ON CONFLICT (user_id, date, item_type, task_type, entity_id) DO UPDATE SET
               count = daily_metrics.count + 1,
               blocks = daily_metrics.blocks + excluded.blocks,
               updated_at = excluded.updated_at""",
        (user_id, entity_id or "", item_type, task_type, _as_date(day).isoformat(), blocks, timestamp()),
    )


async def metric_entity(
    db: aiosqlite.Connection, item_type: str, entity_id: str, pid_id: str | None = None
) -> str:
    """Entity key a completion is counted under.

    Lines and P&IDs count under themselves. Equipment and instruments count
    under the first line of their P&ID so line-keyed reports pick them up,
    or under themselves when the P&ID has no lines.
    """
    if not entity_id or item_type in (ItemType.LINE, ItemType.PID):
        return entity_id or ""
    pid_id = pid_id or await registry.entity_pid_id(db, item_type, entity_id)
    line_id = await registry.first_line_id(db, pid_id) if pid_id else None
    return line_id or entity_id


def _shape(rows: list) -> list[dict]:
    """Group (user, item_type, task_type) sums into one entry per user."""
    per_user: dict[str, dict] = {}
    for row in rows:
        entry = per_user.setdefault(
            row["user_id"],
            {"user_id": row["user_id"], "counts": defaultdict(dict), "total_blocks": 0},
        )
        by_task = entry["counts"][row["item_type"]]
        by_task[row["task_type"]] = by_task.get(row["task_type"], 0) + row["count"]
        entry["total_blocks"] += row["blocks"]

    result = []
    for user_id in sorted(per_user):
        entry = per_user[user_id]
        entry["counts"] = dict(entry["counts"])
        result.append(entry)
    return result


async def _range(
    db: aiosqlite.Connection,
    start: date,
    end: date,
    user_id: str | None = None,
    item_type: str | None = None,
) -> list[dict]:
    conditions = ["date BETWEEN ? AND ?"]
    params: list[str] = [start.isoformat(), end.isoformat()]
    if user_id:
        conditions.append("user_id = ?")
        params.append(user_id)
    if item_type:
        conditions.append("item_type = ?")
        params.append(item_type)

    cursor = await db.execute(
        f"""SELECT user_id, item_type, task_type,
                   SUM(count) AS count, SUM(blocks) AS blocks
            FROM daily_metrics
            WHERE {' AND '.join(conditions)}
            GROUP BY user_id, item_type, task_type
            ORDER BY user_id, item_type, task_type""",
        params,
    )
    return _shape(await cursor.fetchall())


async def daily(
    db: aiosqlite.Connection,
    day: date | str,
    user_id: str | None = None,
    item_type: str | None = None,
) -> list[dict]:
    d = _as_date(day)
    return await _range(db, d, d, user_id, item_type)


async def weekly(
    db: aiosqlite.Connection,
    day: date | str,
    user_id: str | None = None,
    item_type: str | None = None,
) -> list[dict]:
    """Totals over [day-6, day]."""
    d = _as_date(day)
    return await _range(db, d - timedelta(days=WEEK_DAYS - 1), d, user_id, item_type)


async def monthly(
    db: aiosqlite.Connection,
    day: date | str,
    user_id: str | None = None,
    item_type: str | None = None,
) -> list[dict]:
    """Totals over [day-29, day]."""
    d = _as_date(day)
    return await _range(db, d - timedelta(days=MONTH_DAYS - 1), d, user_id, item_type)


async def get_metrics(
    db: aiosqlite.Connection,
    day: date | str,
    user_id: str | None = None,
    item_type: str | None = None,
) -> dict:
    d = _as_date(day)
    return {
        "date": d.isoformat(),
        "daily": await daily(db, d, user_id, item_type),
        "weekly": await weekly(db, d, user_id, item_type),
        "monthly": await monthly(db, d, user_id, item_type),
    }


async def user_breakdown(db: aiosqlite.Connection, user_id: str, day: date | str) -> dict:
    """One user's day as ``{counts: {item_type: {task_type: n}}, total_blocks}``."""
    d = _as_date(day)
    entries = await daily(db, d, user_id=user_id)
    if not entries:
        return {"user_id": user_id, "date": d.isoformat(), "counts": {}, "total_blocks": 0}
    return {"date": d.isoformat(), **entries[0]}
