"""Task Pydantic models and vocabularies."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel


class TaskType(StrEnum):
    REDLINE = "Redline"
    UPV = "UPV"
    QC = "QC"
    MISC = "Misc"


class TaskStatus(StrEnum):
    ASSIGNED = "Assigned"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"


class TaskItemCreate(BaseModel):
    name: str
    type: str
    # Registry id of the line/equipment/P&ID/instrument, when the item is one.
    item_id: str = ""


class TaskCreate(BaseModel):
    task_type: str
    assignee_id: str
    project_id: str
    items: list[TaskItemCreate] = []
    is_complex: bool = False
    description: str = ""


class TaskStatusUpdate(BaseModel):
    status: str


class TaskItemComplete(BaseModel):
    blocks: int


class TaskItemResponse(BaseModel):
    id: str
    task_id: str
    item_id: str
    item_type: str
    name: str
    completed: bool
    completed_at: str | None
    blocks: int


class TaskLineResponse(BaseModel):
    id: str
    task_id: str
    task_item_id: str
    line_id: str
    line_number: str
    completed: bool
    completed_at: str | None
    blocks: int


class TaskResponse(BaseModel):
    id: str
    task_type: str
    assignee_id: str
    assignee_name: str | None = None
    project_id: str
    status: str
    is_complex: bool
    is_pid_based: bool
    progress: int
    description: str
    created_by: str | None
    created_at: str
    updated_at: str
    completed_at: str | None
    items: list[TaskItemResponse] = []
    lines: list[TaskLineResponse] = []


class StatusCounts(BaseModel):
    assigned: int
    inProgress: int
    completed: int


class BlockCountResponse(BaseModel):
    blocks: int
    completed: bool
    completed_by_name: str | None = None
    completed_at: str | None = None


class CommentCreate(BaseModel):
    comment: str


class CommentResponse(BaseModel):
    id: str
    task_id: str
    user_id: str
    user_name: str
    user_role: str
    comment: str
    created_at: str
