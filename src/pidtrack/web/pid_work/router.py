"""PID work routes."""

from __future__ import annotations

from datetime import UTC, date, datetime

from fastapi import APIRouter, Query, Request

from ..deps import CurrentUser, Db, is_lead, require_role, require_self_or_lead
from ..errors import NotFoundError
from ..registry.models import LEAD_ROLES
from ..tasks import service as tasks
from . import service
from .models import (
    AssignedPid,
    AssignPidRequest,
    AssignPidResponse,
    CompletionSummary,
    MarkItemRequest,
    PidGroup,
    PidSummaryRow,
    SkipRequest,
    WorkItemResponse,
)

router = APIRouter(prefix="/api/pid-work", tags=["pid-work"])


def _reuse_window(request: Request) -> int:
    config = getattr(request.app.state, "config", None)
    return config.task_reuse_window_minutes if config else 5


@router.post("/assign-pid", response_model=AssignPidResponse, status_code=201)
async def assign_pid(body: AssignPidRequest, request: Request, user: CurrentUser, db: Db):
    require_role(user, *LEAD_ROLES)
    return await service.assign_pid(
        db,
        pid_id=body.pid_id,
        user_id=body.user_id,
        task_type=body.task_type,
        project_id=body.project_id,
        actor_id=user["sub"],
        reuse_window_minutes=_reuse_window(request),
    )


@router.post("/mark-complete", response_model=WorkItemResponse)
async def mark_complete(body: MarkItemRequest, user: CurrentUser, db: Db):
    require_self_or_lead(user, body.user_id)
    return await service.mark_item(
        db,
        pid_id=body.pid_id,
        user_id=body.user_id,
        task_type=body.task_type,
        status=body.status,
        line_id=body.line_id,
        equipment_id=body.equipment_id,
        remarks=body.remarks,
        blocks=body.blocks,
    )


@router.patch("/skip/{work_item_id}", response_model=WorkItemResponse)
async def skip_item(
    work_item_id: str, user: CurrentUser, db: Db, body: SkipRequest | None = None
):
    item = await service.get_work_item(db, work_item_id)
    if item is None:
        raise NotFoundError(f"Work item {work_item_id} not found")
    require_self_or_lead(user, item["user_id"])
    return await service.skip_item(db, work_item_id, remarks=body.remarks if body else None)


@router.get("/users/{user_id}/assigned-pids", response_model=list[AssignedPid])
async def assigned_pids(
    user_id: str,
    user: CurrentUser,
    db: Db,
    task_type: str = "UPV",
    day: date | None = Query(None, alias="date"),
):
    require_self_or_lead(user, user_id)
    return await service.assigned_pids(db, user_id, task_type=task_type, day=day)


@router.get("/hierarchy/{task_id}", response_model=list[PidGroup])
async def hierarchy(task_id: str, user: CurrentUser, db: Db):
    task = await tasks.get_task(db, task_id)
    if task is None or (not is_lead(user) and task["assignee_id"] != user["sub"]):
        raise NotFoundError(f"Task {task_id} not found")
    return await service.task_hierarchy(db, task_id)


@router.get("/summary", response_model=list[PidSummaryRow])
async def summary(user: CurrentUser, db: Db):
    require_role(user, *LEAD_ROLES)
    return await service.pid_summary(db)


@router.get("/completion-summary", response_model=CompletionSummary)
async def completion_summary(
    user: CurrentUser,
    db: Db,
    task_type: str = "UPV",
    day: date | None = Query(None, alias="date"),
):
    require_role(user, *LEAD_ROLES)
    return await service.completion_summary(
        db, day or datetime.now(UTC).date(), task_type=task_type
    )
