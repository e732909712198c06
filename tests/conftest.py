"""Shared fixtures: a fresh SQLite file per test with a small plant registry."""

from __future__ import annotations

import pytest_asyncio

from pidtrack.web.db.database import apply_schema, connect
from pidtrack.web.registry import service as registry
from pidtrack.web.registry.models import Role


@pytest_asyncio.fixture
async def db(tmp_path):
    """Create a test database with the full schema."""
    conn = await connect(str(tmp_path / "test.db"))
    await apply_schema(conn)

    yield conn

    await conn.close()


@pytest_asyncio.fixture
async def plant(db):
    """Users, two projects and P&IDs with fixed ids.

    pid1 (PID-100): lines l1, l2 and equipment e1
    pid2 (PID-200): line l3
    pid3 (PID-300): equipment e3 only, no lines
    pid_empty (PID-400): nothing drawn on it
    pidx (PID-900): belongs to proj2
    """
    await registry.create_user(db, "lead", "Lena Lead", Role.TEAM_LEAD, user_id="lead1")
    await registry.create_user(db, "alice", "Alice Johnson", Role.TEAM_MEMBER, user_id="alice1")
    await registry.create_user(db, "bob", "Bob Smith", Role.TEAM_MEMBER, user_id="bob1")
    await registry.create_user(db, "pm", "Priya Manager", Role.PROJECT_MANAGER, user_id="pm1")

    await registry.create_project(db, "Crude Unit", project_id="proj1")
    await registry.create_project(db, "Tank Farm", project_id="proj2")

    await registry.create_pid(db, "proj1", "PID-100", pid_id="pid1")
    await registry.create_line(db, "pid1", "100-P-001", line_id="l1")
    await registry.create_line(db, "pid1", "100-P-002", line_id="l2")
    await registry.create_equipment(db, "pid1", "E-101", equipment_id="e1")

    await registry.create_pid(db, "proj1", "PID-200", pid_id="pid2")
    await registry.create_line(db, "pid2", "200-P-010", line_id="l3")

    await registry.create_pid(db, "proj1", "PID-300", pid_id="pid3")
    await registry.create_equipment(db, "pid3", "T-301", equipment_id="e3")

    await registry.create_pid(db, "proj1", "PID-400", pid_id="pid_empty")

    await registry.create_pid(db, "proj2", "PID-900", pid_id="pidx")
    await registry.create_line(db, "pidx", "900-P-001", line_id="lx")

    return db
