"""Audit log routes."""

from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from ..deps import CurrentUser, Db, require_role
from ..registry.models import Role
from . import service

router = APIRouter(prefix="/api/audit-logs", tags=["audit"])


class AuditEntryResponse(BaseModel):
    id: str
    type: str
    name: str
    actor_id: str | None
    actor_name: str | None = None
    description: str | None = ""
    timestamp: str


@router.get("", response_model=list[AuditEntryResponse])
async def list_audit_logs(user: CurrentUser, db: Db, limit: int = 100):
    require_role(user, Role.ADMIN, Role.PROJECT_MANAGER)
    return await service.list_entries(db, limit=min(limit, 500))
