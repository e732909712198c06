"""Metrics routes."""

from __future__ import annotations

from datetime import UTC, date, datetime

from fastapi import APIRouter, Query

from ..deps import CurrentUser, Db, is_lead, require_self_or_lead
from . import service
from .models import MetricsResponse, UserDailyResponse

router = APIRouter(prefix="/api/metrics", tags=["metrics"])


def _today() -> date:
    # Completions are bucketed by UTC day.
    return datetime.now(UTC).date()


@router.get("", response_model=MetricsResponse)
async def get_metrics(
    user: CurrentUser,
    db: Db,
    day: date | None = Query(None, alias="date"),
    user_id: str | None = None,
    item_type: str | None = None,
):
    if not is_lead(user):
        user_id = user["sub"]
    return await service.get_metrics(db, day or _today(), user_id=user_id, item_type=item_type)


@router.get("/users/{user_id}/daily", response_model=UserDailyResponse)
async def get_user_daily(
    user_id: str,
    user: CurrentUser,
    db: Db,
    day: date | None = Query(None, alias="date"),
):
    require_self_or_lead(user, user_id)
    return await service.user_breakdown(db, user_id, day or _today())
