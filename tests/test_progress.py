"""Tests for task progress aggregation."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from pidtrack.web.tasks import service as tasks
from pidtrack.web.tasks.progress import (
    compute_progress,
    count_items,
    recompute_task_progress,
    touch_task,
)

NOW = datetime(2026, 3, 2, 9, 30, tzinfo=UTC)


class TestComputeProgress:
    def test_empty_task_is_zero(self):
        assert compute_progress(0, 0) == 0

    def test_two_of_three(self):
        assert compute_progress(2, 3) == 67

    def test_one_of_three(self):
        assert compute_progress(1, 3) == 33

    def test_all_done(self):
        assert compute_progress(3, 3) == 100

    @pytest.mark.parametrize(
        "done,total,expected",
        [(1, 8, 13), (3, 8, 38), (5, 8, 63), (7, 8, 88), (1, 2, 50)],
    )
    def test_ties_round_half_up(self, done, total, expected):
        assert compute_progress(done, total) == expected

    def test_partial_never_reports_100(self):
        assert compute_progress(199, 200) == 99
        assert compute_progress(999, 1000) == 99

    def test_below_every_n_stays_under_100(self):
        for total in range(1, 60):
            for done in range(total):
                assert compute_progress(done, total) < 100


async def _task_with_items(db, count: int) -> dict:
    return await tasks.create_task(
        db,
        task_type="Redline",
        assignee_id="alice1",
        project_id="proj1",
        items=[{"name": f"Line-{i}", "type": "Line"} for i in range(1, count + 1)],
        created_by="lead1",
        now=NOW,
    )


class TestRecomputeTaskProgress:
    async def test_fresh_task_is_zero(self, plant):
        task = await _task_with_items(plant, 3)
        result = await recompute_task_progress(plant, task["id"], NOW)
        assert result["progress"] == 0
        assert result["status"] == "Assigned"
        assert result["total"] == 3
        assert result["just_completed"] is False

    async def test_counts_terminal_items(self, plant):
        task = await _task_with_items(plant, 3)
        item_ids = [i["id"] for i in task["items"]]
        await plant.execute(
            "UPDATE task_items SET completed = 1 WHERE id IN (?, ?)", (item_ids[0], item_ids[1])
        )

        assert await count_items(plant, task["id"]) == (2, 3)
        result = await recompute_task_progress(plant, task["id"], NOW)
        assert result["progress"] == 67
        assert result["status"] == "Assigned"

    async def test_auto_completes_at_100(self, plant):
        task = await _task_with_items(plant, 2)
        await plant.execute("UPDATE task_items SET completed = 1 WHERE task_id = ?", (task["id"],))

        result = await recompute_task_progress(plant, task["id"], NOW)
        assert result["progress"] == 100
        assert result["status"] == "Completed"
        assert result["just_completed"] is True

        stored = await tasks.get_task(plant, task["id"])
        assert stored["completed_at"] == "2026-03-02 09:30:00"

        again = await recompute_task_progress(plant, task["id"], NOW)
        assert again["just_completed"] is False

    async def test_task_without_items_never_auto_completes(self, plant):
        task = await tasks.create_task(
            plant,
            task_type="Misc",
            assignee_id="alice1",
            project_id="proj1",
            items=[],
            created_by="lead1",
            description="Tidy up the line list",
        )
        result = await recompute_task_progress(plant, task["id"], NOW)
        assert result["progress"] == 0
        assert result["status"] == "Assigned"


class TestTouchTask:
    async def test_first_touch_moves_to_in_progress(self, plant):
        task = await _task_with_items(plant, 1)
        assert await touch_task(plant, task["id"], NOW) is True
        assert (await tasks.get_task(plant, task["id"]))["status"] == "In Progress"

    async def test_second_touch_is_noop(self, plant):
        task = await _task_with_items(plant, 1)
        await touch_task(plant, task["id"], NOW)
        assert await touch_task(plant, task["id"], NOW) is False
