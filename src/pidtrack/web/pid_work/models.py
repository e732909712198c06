"""PID work Pydantic models."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel


class PidItemStatus(StrEnum):
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    SKIPPED = "Skipped"


TERMINAL_STATUSES = (PidItemStatus.COMPLETED, PidItemStatus.SKIPPED)


class AssignPidRequest(BaseModel):
    pid_id: str
    user_id: str
    task_type: str
    project_id: str


class AssignedItem(BaseModel):
    id: str
    line_id: str | None
    equipment_id: str | None
    item_name: str


class AssignPidResponse(BaseModel):
    task_id: str
    pid_id: str
    pid_number: str
    user_id: str
    task_type: str
    items_count: int
    is_new_task: bool
    items: list[AssignedItem]


class MarkItemRequest(BaseModel):
    pid_id: str
    user_id: str
    task_type: str
    status: str
    line_id: str | None = None
    equipment_id: str | None = None
    remarks: str | None = None
    blocks: int = 0


class SkipRequest(BaseModel):
    remarks: str | None = None


class WorkItemResponse(BaseModel):
    id: str
    pid_id: str
    line_id: str | None
    equipment_id: str | None
    status: str
    blocks: int
    remarks: str | None
    completed_at: str | None
    task_id: str
    task_progress: int
    task_status: str


class PidWorkItem(BaseModel):
    id: str
    line_id: str | None
    line_number: str | None
    equipment_id: str | None
    equipment_number: str | None
    status: str
    remarks: str | None
    blocks: int
    completed_at: str | None


class AssignedPid(BaseModel):
    pid_id: str
    pid_number: str
    task_type: str
    total_items: int
    completed_items: int
    skipped_items: int
    items: list[PidWorkItem]


class PidGroup(BaseModel):
    pid_id: str
    pid_number: str
    items: list[PidWorkItem]
    completed_count: int
    total_count: int
    all_completed: bool


class PidSummaryRow(BaseModel):
    user_id: str
    user_name: str
    pid_id: str
    pid_number: str
    task_type: str
    assigned_date: str
    status: str
    total_items: int
    completed_items: int
    skipped_items: int
    total_blocks: int
    completion_date: str | None


class UserCompletion(BaseModel):
    user_id: str
    user_name: str
    pids_completed: int
    lines_completed: int
    equipment_completed: int
    line_ids: list[str]
    equipment_ids: list[str]
    total_blocks: int


class CompletionSummary(BaseModel):
    date: str
    task_type: str
    data: list[UserCompletion]
