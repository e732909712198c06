"""SSE streaming endpoint."""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any

import jwt
from fastapi import APIRouter, HTTPException, Query
from sse_starlette.sse import EventSourceResponse

from ..db.database import connect
from .manager import event_manager
from .models import Event, EventType

router = APIRouter(prefix="/api/events", tags=["events"])

# Events whose data is a flat entity dict that must be wrapped under a key.
_ENTITY_WRAP_KEY: dict[EventType, str] = {
    EventType.TASK_CREATED: "task",
    EventType.TASK_UPDATED: "task",
    EventType.TASK_COMPLETED: "task",
    EventType.WORK_ITEM_UPDATED: "item",
    EventType.COMMENT_ADDED: "comment",
}


def format_event(event: Event) -> dict[str, Any]:
    """Format an Event into the JSON structure the dashboard expects.

    Events are sent as unnamed SSE messages with the type inside the payload.
    """
    wrap_key = _ENTITY_WRAP_KEY.get(event.event_type)
    if wrap_key:
        return {"type": event.event_type.value, wrap_key: event.data}
    return {"type": event.event_type.value, **event.data}


@router.get("/stream")
async def event_stream(
    project_id: str = Query(..., description="Project ID to subscribe to"),
    token: str = Query("", description="JWT token (EventSource can't send headers)"),
):
    """SSE stream of task and work-item changes for one project."""
    if not token:
        raise HTTPException(status_code=401, detail="Missing token")

    try:
        from ..auth.service import decode_token

        user = decode_token(token)
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token") from None

    db = await connect()
    try:
        cursor = await db.execute("SELECT id FROM users WHERE id = ?", (user["sub"],))
        if not await cursor.fetchone():
            raise HTTPException(status_code=401, detail="User not found")
        cursor = await db.execute("SELECT id FROM projects WHERE id = ?", (project_id,))
        if not await cursor.fetchone():
            raise HTTPException(status_code=404, detail="Project not found")
    finally:
        await db.close()

    async def generate():
        channel = f"project:{project_id}"
        queue = await event_manager.subscribe(channel)
        try:
            await event_manager.publish_to_project(
                project_id,
                Event(
                    event_type=EventType.USER_PRESENCE,
                    data={"user_id": user["sub"], "action": "joined"},
                ),
            )

            while True:
                try:
                    event: Event = await asyncio.wait_for(queue.get(), timeout=30.0)
                    yield {"data": json.dumps(format_event(event))}
                except TimeoutError:
                    yield {
                        "data": json.dumps({"type": "heartbeat", "timestamp": time.time()}),
                    }
        finally:
            await event_manager.unsubscribe(channel, queue)
            await event_manager.publish_to_project(
                project_id,
                Event(
                    event_type=EventType.USER_PRESENCE,
                    data={"user_id": user["sub"], "action": "left"},
                ),
            )

    return EventSourceResponse(generate())
