"""SSE event models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class EventType(StrEnum):
    # Task events
    TASK_CREATED = "task_created"
    TASK_UPDATED = "task_updated"
    TASK_COMPLETED = "task_completed"
    # Work item events
    WORK_ITEM_UPDATED = "work_item_updated"
    PID_ASSIGNED = "pid_assigned"
    # Comment events
    COMMENT_ADDED = "comment_added"
    # Misc
    USER_PRESENCE = "user_presence"
    HEARTBEAT = "heartbeat"


@dataclass
class Event:
    event_type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    channel: str = ""
