"""Registry Pydantic models and vocabularies."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel


class Role(StrEnum):
    TEAM_MEMBER = "Team Member"
    TEAM_LEAD = "Team Lead"
    PROJECT_MANAGER = "Project Manager"
    ADMIN = "Admin"
    DATA_ENTRY = "Data Entry"


# Roles allowed to hand out work and to act on other people's items.
LEAD_ROLES = (Role.TEAM_LEAD, Role.PROJECT_MANAGER, Role.ADMIN)


class ItemType(StrEnum):
    LINE = "Line"
    EQUIPMENT = "Equipment"
    PID = "PID"
    NON_INLINE_INSTRUMENT = "NonInlineInstrument"


class ProjectResponse(BaseModel):
    id: str
    name: str
    created_at: str


class PidResponse(BaseModel):
    id: str
    project_id: str
    pid_number: str
    description: str = ""
    line_count: int = 0
    equipment_count: int = 0


class PidItem(BaseModel):
    line_id: str | None
    equipment_id: str | None
    item_type: str
    item_name: str
