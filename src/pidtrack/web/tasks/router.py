"""Task routes."""

from __future__ import annotations

from fastapi import APIRouter

from ..deps import CurrentUser, Db, is_lead, require_role
from ..errors import AuthorizationError, NotFoundError
from ..registry.models import LEAD_ROLES
from . import service
from .models import (
    BlockCountResponse,
    CommentCreate,
    CommentResponse,
    StatusCounts,
    TaskCreate,
    TaskItemComplete,
    TaskResponse,
    TaskStatusUpdate,
)

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


async def _visible_task(db, task_id: str, user: dict) -> dict:
    """Load a task the user may see. Other people's tasks look absent to members."""
    task = await service.get_task(db, task_id)
    if task is None or (not is_lead(user) and task["assignee_id"] != user["sub"]):
        raise NotFoundError(f"Task {task_id} not found")
    return task


def _require_assignee_or_lead(task: dict, user: dict) -> None:
    if task["assignee_id"] != user["sub"] and not is_lead(user):
        raise AuthorizationError("Only the assignee or a lead can update this task")


@router.get("", response_model=list[TaskResponse])
async def list_tasks(
    user: CurrentUser,
    db: Db,
    assignee_id: str | None = None,
    project_id: str | None = None,
    status: str | None = None,
):
    if not is_lead(user):
        assignee_id = user["sub"]
    return await service.list_tasks(
        db, assignee_id=assignee_id, project_id=project_id, status=status
    )


@router.post("", response_model=TaskResponse, status_code=201)
async def create_task(body: TaskCreate, user: CurrentUser, db: Db):
    require_role(user, *LEAD_ROLES)
    return await service.create_task(
        db,
        task_type=body.task_type,
        assignee_id=body.assignee_id,
        project_id=body.project_id,
        items=[item.model_dump() for item in body.items],
        created_by=user["sub"],
        is_complex=body.is_complex,
        description=body.description,
    )


@router.get("/status-counts", response_model=StatusCounts)
async def status_counts(user: CurrentUser, db: Db, project_id: str | None = None):
    assignee_id = None if is_lead(user) else user["sub"]
    return await service.status_counts(db, project_id=project_id, assignee_id=assignee_id)


@router.get("/block-counts/{item_type}/{item_id}", response_model=BlockCountResponse)
async def block_count(item_type: str, item_id: str, user: CurrentUser, db: Db):
    return await service.get_block_count(db, item_type, item_id)


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(task_id: str, user: CurrentUser, db: Db):
    return await _visible_task(db, task_id, user)


@router.put("/{task_id}/status", response_model=TaskResponse)
async def update_status(task_id: str, body: TaskStatusUpdate, user: CurrentUser, db: Db):
    task = await _visible_task(db, task_id, user)
    _require_assignee_or_lead(task, user)
    return await service.update_task_status(db, task_id, body.status)


@router.put("/{task_id}/items/{item_id}", response_model=TaskResponse)
async def complete_item(
    task_id: str, item_id: str, body: TaskItemComplete, user: CurrentUser, db: Db
):
    task = await _visible_task(db, task_id, user)
    _require_assignee_or_lead(task, user)
    return await service.complete_task_item(db, task_id, item_id, body.blocks)


@router.put("/{task_id}/lines/{line_id}", response_model=TaskResponse)
async def complete_line(
    task_id: str, line_id: str, body: TaskItemComplete, user: CurrentUser, db: Db
):
    task = await _visible_task(db, task_id, user)
    _require_assignee_or_lead(task, user)
    return await service.complete_task_line(db, task_id, line_id, body.blocks)


# --- Comments ---


@router.get("/{task_id}/comments", response_model=list[CommentResponse])
async def get_comments(task_id: str, user: CurrentUser, db: Db):
    await _visible_task(db, task_id, user)
    return await service.list_comments(db, task_id)


@router.post("/{task_id}/comments", response_model=CommentResponse, status_code=201)
async def add_comment(task_id: str, body: CommentCreate, user: CurrentUser, db: Db):
    await _visible_task(db, task_id, user)
    return await service.add_comment(db, task_id, user, body.comment)
