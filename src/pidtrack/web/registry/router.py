"""Registry read routes."""

from __future__ import annotations

from fastapi import APIRouter

from ..deps import CurrentUser, Db
from ..errors import NotFoundError
from . import service
from .models import PidItem, PidResponse, ProjectResponse

router = APIRouter(prefix="/api", tags=["registry"])


@router.get("/projects", response_model=list[ProjectResponse])
async def list_projects(user: CurrentUser, db: Db):
    return await service.list_projects(db)


@router.get("/projects/{project_id}/pids", response_model=list[PidResponse])
async def list_pids(project_id: str, user: CurrentUser, db: Db):
    if await service.get_project(db, project_id) is None:
        raise NotFoundError("Project not found")
    return await service.list_pids(db, project_id)


@router.get("/pids/{pid_id}/items", response_model=list[PidItem])
async def list_pid_items(pid_id: str, user: CurrentUser, db: Db):
    if await service.get_pid(db, pid_id) is None:
        raise NotFoundError("P&ID not found")
    return await service.list_pid_items(db, pid_id)
