"""Tests for the live events published by the task and P&ID work services."""

from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio

from pidtrack.web.errors import ConflictError
from pidtrack.web.events import Event, EventType, event_manager
from pidtrack.web.events.router import format_event
from pidtrack.web.pid_work import service as pid_work
from pidtrack.web.tasks import service as tasks


@pytest_asyncio.fixture
async def feed():
    """Subscribe to proj1's channel for the duration of a test."""
    queue = await event_manager.subscribe("project:proj1")
    yield queue
    await event_manager.unsubscribe("project:proj1", queue)


def _drain(queue: asyncio.Queue) -> list[Event]:
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


class TestTaskEvents:
    async def test_auto_completion_is_announced(self, plant, feed):
        task = await tasks.create_task(
            plant,
            task_type="Redline",
            assignee_id="alice1",
            project_id="proj1",
            items=[{"name": "100-P-001", "type": "Line", "item_id": "l1"}],
            created_by="lead1",
        )
        await tasks.complete_task_item(plant, task["id"], task["items"][0]["id"], blocks=2)

        events = _drain(feed)
        assert [e.event_type for e in events] == [EventType.TASK_CREATED, EventType.TASK_COMPLETED]
        assert events[1].data["progress"] == 100
        assert events[1].channel == "project:proj1"

    async def test_partial_progress_is_an_update(self, plant, feed):
        assigned = await pid_work.assign_pid(plant, "pid1", "alice1", "UPV", "proj1")
        await pid_work.mark_item(plant, "pid1", "alice1", "UPV", "Completed", line_id="l1", blocks=1)

        events = _drain(feed)
        assert [e.event_type for e in events] == [
            EventType.PID_ASSIGNED,
            EventType.TASK_CREATED,
            EventType.WORK_ITEM_UPDATED,
            EventType.TASK_UPDATED,
        ]
        assert events[0].data["items_count"] == 3
        assert events[2].data["task_progress"] == 33
        assert events[3].data["id"] == assigned["task_id"]

    async def test_rejected_change_publishes_nothing(self, plant, feed):
        await pid_work.assign_pid(plant, "pid1", "alice1", "UPV", "proj1")
        _drain(feed)

        with pytest.raises(ConflictError):
            await pid_work.assign_pid(plant, "pid1", "bob1", "UPV", "proj1")

        assert _drain(feed) == []

    async def test_other_projects_are_not_notified(self, plant, feed):
        await pid_work.assign_pid(plant, "pidx", "alice1", "UPV", "proj2")
        assert _drain(feed) == []


class TestFormatEvent:
    def test_task_events_wrap_the_snapshot(self):
        event = Event(event_type=EventType.TASK_COMPLETED, data={"id": "t1", "progress": 100})
        assert format_event(event) == {
            "type": "task_completed",
            "task": {"id": "t1", "progress": 100},
        }

    def test_assignment_events_are_flat(self):
        event = Event(event_type=EventType.PID_ASSIGNED, data={"task_id": "t1", "items_count": 2})
        assert format_event(event) == {"type": "pid_assigned", "task_id": "t1", "items_count": 2}
