"""Metrics Pydantic models."""

from __future__ import annotations

from pydantic import BaseModel


class MetricEntry(BaseModel):
    user_id: str
    # item_type -> task_type -> completed count
    counts: dict[str, dict[str, int]]
    total_blocks: int


class MetricsResponse(BaseModel):
    date: str
    daily: list[MetricEntry]
    weekly: list[MetricEntry]
    monthly: list[MetricEntry]


class UserDailyResponse(MetricEntry):
    date: str
