"""Registry service - read access to projects, P&IDs and their items.

The engine never owns this data. The ``create_*`` helpers exist for seeding
and tests.
"""

from __future__ import annotations

import secrets

import aiosqlite

from .models import ItemType, Role

# item_type -> table holding that entity
_ENTITY_TABLES: dict[str, str] = {
    ItemType.LINE: "lines",
    ItemType.EQUIPMENT: "equipment",
    ItemType.PID: "pids",
    ItemType.NON_INLINE_INSTRUMENT: "non_inline_instruments",
}


async def _fetch_one(db: aiosqlite.Connection, sql: str, params: tuple) -> dict | None:
    cursor = await db.execute(sql, params)
    row = await cursor.fetchone()
    return dict(row) if row else None


async def get_user(db: aiosqlite.Connection, user_id: str) -> dict | None:
    return await _fetch_one(db, "SELECT * FROM users WHERE id = ?", (user_id,))


async def get_user_by_username(db: aiosqlite.Connection, username: str) -> dict | None:
    return await _fetch_one(
        db, "SELECT * FROM users WHERE LOWER(username) = ?", (username.strip().lower(),)
    )


async def get_project(db: aiosqlite.Connection, project_id: str) -> dict | None:
    return await _fetch_one(db, "SELECT * FROM projects WHERE id = ?", (project_id,))


async def list_projects(db: aiosqlite.Connection) -> list[dict]:
    cursor = await db.execute("SELECT * FROM projects ORDER BY created_at DESC, name")
    return [dict(r) for r in await cursor.fetchall()]


async def get_pid(db: aiosqlite.Connection, pid_id: str) -> dict | None:
    return await _fetch_one(db, "SELECT * FROM pids WHERE id = ?", (pid_id,))


async def list_pids(db: aiosqlite.Connection, project_id: str) -> list[dict]:
    cursor = await db.execute(
        """SELECT p.*,
                  (SELECT COUNT(*) FROM lines l WHERE l.pid_id = p.id) AS line_count,
                  (SELECT COUNT(*) FROM equipment e WHERE e.pid_id = p.id) AS equipment_count
           FROM pids p
           WHERE p.project_id = ?
           ORDER BY p.pid_number""",
        (project_id,),
    )
    return [dict(r) for r in await cursor.fetchall()]


async def list_pid_items(db: aiosqlite.Connection, pid_id: str) -> list[dict]:
    """Every line and equipment item drawn on a P&ID, ordered by name."""
    cursor = await db.execute(
        """SELECT id AS line_id, NULL AS equipment_id, 'Line' AS item_type,
                  line_number AS item_name
           FROM lines WHERE pid_id = ?
           UNION ALL
           SELECT NULL AS line_id, id AS equipment_id, 'Equipment' AS item_type,
                  equipment_number AS item_name
           FROM equipment WHERE pid_id = ?
           ORDER BY item_name""",
        (pid_id, pid_id),
    )
    return [dict(r) for r in await cursor.fetchall()]


async def first_line_id(db: aiosqlite.Connection, pid_id: str) -> str | None:
    cursor = await db.execute(
        "SELECT id FROM lines WHERE pid_id = ? ORDER BY id ASC LIMIT 1", (pid_id,)
    )
    row = await cursor.fetchone()
    return row["id"] if row else None


async def list_pid_lines(db: aiosqlite.Connection, pid_id: str) -> list[dict]:
    cursor = await db.execute(
        "SELECT id, line_number FROM lines WHERE pid_id = ? ORDER BY line_number", (pid_id,)
    )
    return [dict(r) for r in await cursor.fetchall()]


async def entity_pid_id(db: aiosqlite.Connection, item_type: str, entity_id: str) -> str | None:
    """P&ID a registry entity is drawn on. A P&ID is its own."""
    if item_type == ItemType.PID:
        return entity_id
    table = _ENTITY_TABLES.get(item_type)
    if table is None:
        return None
    row = await _fetch_one(db, f"SELECT pid_id FROM {table} WHERE id = ?", (entity_id,))
    return row["pid_id"] if row else None


async def entity_in_project(
    db: aiosqlite.Connection, item_type: str, item_id: str, project_id: str
) -> bool:
    table = _ENTITY_TABLES.get(item_type)
    if table is None:
        return False
    cursor = await db.execute(
        f"SELECT 1 FROM {table} WHERE id = ? AND project_id = ?", (item_id, project_id)
    )
    return await cursor.fetchone() is not None


# --- Inserts (seed/tests) ---


async def create_user(
    db: aiosqlite.Connection,
    username: str,
    name: str = "",
    role: str = Role.TEAM_MEMBER,
    user_id: str | None = None,
) -> dict:
    user_id = user_id or secrets.token_hex(8)
    await db.execute(
        "INSERT INTO users (id, username, name, role) VALUES (?, ?, ?, ?)",
        (user_id, username.strip().lower(), name or username.capitalize(), str(role)),
    )
    return await get_user(db, user_id)


async def create_project(
    db: aiosqlite.Connection, name: str, project_id: str | None = None
) -> dict:
    project_id = project_id or secrets.token_hex(8)
    await db.execute("INSERT INTO projects (id, name) VALUES (?, ?)", (project_id, name))
    return await get_project(db, project_id)


async def create_pid(
    db: aiosqlite.Connection,
    project_id: str,
    pid_number: str,
    description: str = "",
    pid_id: str | None = None,
) -> dict:
    pid_id = pid_id or secrets.token_hex(8)
    await db.execute(
        "INSERT INTO pids (id, project_id, pid_number, description) VALUES (?, ?, ?, ?)",
        (pid_id, project_id, pid_number, description),
    )
    return await get_pid(db, pid_id)


async def _create_pid_child(
    db: aiosqlite.Connection,
    table: str,
    name_column: str,
    pid_id: str,
    name: str,
    entity_id: str | None,
) -> dict:
    pid = await get_pid(db, pid_id)
    if pid is None:
        raise ValueError(f"P&ID {pid_id} not found")
    entity_id = entity_id or secrets.token_hex(8)
    await db.execute(
        f"INSERT INTO {table} (id, pid_id, project_id, {name_column}) VALUES (?, ?, ?, ?)",
        (entity_id, pid_id, pid["project_id"], name),
    )
    return await _fetch_one(db, f"SELECT * FROM {table} WHERE id = ?", (entity_id,))


async def create_line(
    db: aiosqlite.Connection, pid_id: str, line_number: str, line_id: str | None = None
) -> dict:
    return await _create_pid_child(db, "lines", "line_number", pid_id, line_number, line_id)


async def create_equipment(
    db: aiosqlite.Connection,
    pid_id: str,
    equipment_number: str,
    equipment_id: str | None = None,
) -> dict:
    return await _create_pid_child(
        db, "equipment", "equipment_number", pid_id, equipment_number, equipment_id
    )


async def create_instrument(
    db: aiosqlite.Connection,
    pid_id: str,
    instrument_tag: str,
    instrument_id: str | None = None,
) -> dict:
    return await _create_pid_child(
        db, "non_inline_instruments", "instrument_tag", pid_id, instrument_tag, instrument_id
    )
