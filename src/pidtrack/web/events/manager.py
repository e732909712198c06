"""EventManager - in-memory pub/sub for SSE events."""

from __future__ import annotations

import asyncio
import contextlib
from collections import defaultdict

from .models import Event, EventType


class EventManager:
    """In-memory pub/sub for SSE events."""

    def __init__(self) -> None:
        self._channels: dict[str, set[asyncio.Queue]] = defaultdict(set)

    async def subscribe(self, channel: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=100)
        self._channels[channel].add(queue)
        return queue

    async def unsubscribe(self, channel: str, queue: asyncio.Queue) -> None:
        self._channels[channel].discard(queue)
        if not self._channels[channel]:
            del self._channels[channel]

    async def publish(self, channel: str, event: Event) -> None:
        for queue in list(self._channels.get(channel, [])):
            with contextlib.suppress(asyncio.QueueFull):
                queue.put_nowait(event)

    async def publish_to_project(self, project_id: str, event: Event) -> None:
        """Convenience: publish to project:{project_id} channel."""
        event.channel = f"project:{project_id}"
        await self.publish(f"project:{project_id}", event)

    async def publish_task(self, task: dict, event_type: EventType, **extra) -> None:
        """Publish a task snapshot to its project's channel.

        An update that leaves the task Completed goes out as task_completed.
        """
        if event_type == EventType.TASK_UPDATED and task.get("status") == "Completed":
            event_type = EventType.TASK_COMPLETED
        data = {**task, **extra} if extra else task
        await self.publish_to_project(task["project_id"], Event(event_type=event_type, data=data))


# Singleton instance
event_manager = EventManager()
