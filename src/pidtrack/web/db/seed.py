"""Seed database with demo data."""

from __future__ import annotations

import aiosqlite

from ..registry import service as registry
from ..registry.models import Role
from .database import transaction


async def seed_db(db: aiosqlite.Connection) -> bool:
    """Seed demo users, one project and a few P&IDs. Returns False if data exists."""

    # Check if already seeded
    cursor = await db.execute("SELECT COUNT(*) FROM users")
    row = await cursor.fetchone()
    if row[0] > 0:
        return False

    async with transaction(db):
        # --- Users ---
        for username, name, role in [
            ("lead", "Lena Lead", Role.TEAM_LEAD),
            ("alice", "Alice Johnson", Role.TEAM_MEMBER),
            ("bob", "Bob Smith", Role.TEAM_MEMBER),
            ("pm", "Priya Manager", Role.PROJECT_MANAGER),
            ("admin", "Admin", Role.ADMIN),
            ("entry", "Dana Entry", Role.DATA_ENTRY),
        ]:
            await registry.create_user(db, username, name, role)

        # --- Project ---
        project = await registry.create_project(db, "Crude Unit Revamp")

        # --- P&IDs with their lines and equipment ---
        drawings = {
            "PID-100": (["100-P-001", "100-P-002", "100-P-003"], ["E-101", "P-101A"]),
            "PID-200": (["200-P-010", "200-P-011"], ["V-201"]),
            "PID-300": ([], ["T-301", "T-302"]),
        }
        for pid_number, (lines, equipment) in drawings.items():
            pid = await registry.create_pid(db, project["id"], pid_number)
            for line_number in lines:
                await registry.create_line(db, pid["id"], line_number)
            for equipment_number in equipment:
                await registry.create_equipment(db, pid["id"], equipment_number)
            await registry.create_instrument(db, pid["id"], f"{pid_number[4:]}-PI-01")

    return True
