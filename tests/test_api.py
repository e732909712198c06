"""End-to-end tests through the HTTP API on a seeded database."""

from __future__ import annotations

import httpx
import pytest_asyncio

from pidtrack.web.app import create_app
from pidtrack.web.config import WebConfig


@pytest_asyncio.fixture
async def client(tmp_path):
    config = WebConfig(
        db_path=str(tmp_path / "api.db"), jwt_secret="test-secret", seed_demo_data=True
    )
    app = create_app(config)
    async with app.router.lifespan_context(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
            yield c


async def _login(client, username: str) -> tuple[dict, dict]:
    resp = await client.post("/api/auth/login", json={"username": username})
    assert resp.status_code == 200
    body = resp.json()
    return {"Authorization": f"Bearer {body['token']}"}, body["user"]


async def _pid(client, headers, pid_number: str = "PID-100") -> tuple[str, str]:
    projects = (await client.get("/api/projects", headers=headers)).json()
    project_id = projects[0]["id"]
    pids = (await client.get(f"/api/projects/{project_id}/pids", headers=headers)).json()
    pid_id = next(p["id"] for p in pids if p["pid_number"] == pid_number)
    return project_id, pid_id


class TestAuth:
    async def test_health(self, client):
        assert (await client.get("/api/health")).json() == {"status": "ok"}

    async def test_login_and_me(self, client):
        headers, user = await _login(client, "alice")
        assert user["role"] == "Team Member"
        me = await client.get("/api/auth/me", headers=headers)
        assert me.json()["id"] == user["id"]

    async def test_unknown_user(self, client):
        resp = await client.post("/api/auth/login", json={"username": "mallory"})
        assert resp.status_code == 401

    async def test_missing_token(self, client):
        assert (await client.get("/api/tasks")).status_code == 401


class TestRegistry:
    async def test_pid_items(self, client):
        headers, _ = await _login(client, "lead")
        _, pid_id = await _pid(client, headers)
        items = (await client.get(f"/api/pids/{pid_id}/items", headers=headers)).json()
        assert len(items) == 5
        assert {i["item_type"] for i in items} == {"Line", "Equipment"}

    async def test_unknown_pid(self, client):
        headers, _ = await _login(client, "lead")
        resp = await client.get("/api/pids/missing/items", headers=headers)
        assert resp.status_code == 404
        assert resp.json()["error"] == "NOT_FOUND"


class TestPidWorkFlow:
    async def test_member_cannot_assign(self, client):
        headers, alice = await _login(client, "alice")
        project_id, pid_id = await _pid(client, headers)
        resp = await client.post(
            "/api/pid-work/assign-pid",
            headers=headers,
            json={
                "pid_id": pid_id,
                "user_id": alice["id"],
                "task_type": "UPV",
                "project_id": project_id,
            },
        )
        assert resp.status_code == 403
        assert resp.json()["error"] == "FORBIDDEN"

    async def test_assign_complete_and_report(self, client):
        lead, _ = await _login(client, "lead")
        alice, alice_user = await _login(client, "alice")
        bob, bob_user = await _login(client, "bob")
        project_id, pid_id = await _pid(client, lead, "PID-200")

        payload = {
            "pid_id": pid_id,
            "user_id": alice_user["id"],
            "task_type": "UPV",
            "project_id": project_id,
        }
        resp = await client.post("/api/pid-work/assign-pid", headers=lead, json=payload)
        assert resp.status_code == 201
        assigned = resp.json()
        assert assigned["items_count"] == 3
        assert assigned["is_new_task"] is True

        clash = await client.post(
            "/api/pid-work/assign-pid", headers=lead, json={**payload, "user_id": bob_user["id"]}
        )
        assert clash.status_code == 409
        assert clash.json()["error"] == "PID_ALREADY_ASSIGNED"
        assert clash.json()["assigned_to"] == "Alice Johnson"

        line_ids = [i["line_id"] for i in assigned["items"] if i["line_id"]]
        mark = {
            "pid_id": pid_id,
            "user_id": alice_user["id"],
            "task_type": "UPV",
            "status": "Completed",
            "line_id": line_ids[0],
        }
        rejected = await client.post(
            "/api/pid-work/mark-complete", headers=alice, json={**mark, "blocks": 0}
        )
        assert rejected.status_code == 400
        assert rejected.json()["error"] == "VALIDATION_ERROR"

        foreign = await client.post(
            "/api/pid-work/mark-complete", headers=bob, json={**mark, "blocks": 2}
        )
        assert foreign.status_code == 403

        done = await client.post(
            "/api/pid-work/mark-complete", headers=alice, json={**mark, "blocks": 2}
        )
        assert done.status_code == 200
        assert done.json()["task_progress"] == 33
        assert done.json()["task_status"] == "In Progress"

        task = (await client.get(f"/api/tasks/{assigned['task_id']}", headers=alice)).json()
        assert task["progress"] == 33

        hidden = await client.get(f"/api/tasks/{assigned['task_id']}", headers=bob)
        assert hidden.status_code == 404

        groups = (
            await client.get(f"/api/pid-work/hierarchy/{assigned['task_id']}", headers=alice)
        ).json()
        assert groups[0]["completed_count"] == 1

        mine = (
            await client.get(
                f"/api/pid-work/users/{alice_user['id']}/assigned-pids", headers=alice
            )
        ).json()
        assert mine[0]["completed_items"] == 1

        report = (await client.get("/api/metrics", headers=alice)).json()
        assert [e["user_id"] for e in report["daily"]] == [alice_user["id"]]
        assert report["daily"][0]["counts"] == {"Line": {"UPV": 1}}

        bob_view = (await client.get("/api/metrics", headers=bob)).json()
        assert bob_view["daily"] == []

        daily = await client.get(f"/api/metrics/users/{alice_user['id']}/daily", headers=bob)
        assert daily.status_code == 403

        summary = await client.get("/api/pid-work/summary", headers=lead)
        assert summary.status_code == 200
        assert summary.json()[0]["status"] == "Pending"
        assert (await client.get("/api/pid-work/summary", headers=alice)).status_code == 403

    async def test_skip_endpoint(self, client):
        lead, _ = await _login(client, "lead")
        alice, alice_user = await _login(client, "alice")
        project_id, pid_id = await _pid(client, lead, "PID-300")
        assigned = (
            await client.post(
                "/api/pid-work/assign-pid",
                headers=lead,
                json={
                    "pid_id": pid_id,
                    "user_id": alice_user["id"],
                    "task_type": "QC",
                    "project_id": project_id,
                },
            )
        ).json()

        for item in assigned["items"]:
            resp = await client.patch(f"/api/pid-work/skip/{item['id']}", headers=alice, json={})
            assert resp.status_code == 200
        assert resp.json()["task_status"] == "Completed"

        again = await client.patch(
            f"/api/pid-work/skip/{assigned['items'][0]['id']}", headers=alice, json={}
        )
        assert again.status_code == 200


class TestTaskRoutes:
    async def test_explicit_task_lifecycle(self, client):
        lead, _ = await _login(client, "lead")
        alice, alice_user = await _login(client, "alice")
        bob, _ = await _login(client, "bob")
        project_id, _ = await _pid(client, lead)

        resp = await client.post(
            "/api/tasks",
            headers=lead,
            json={
                "task_type": "Redline",
                "assignee_id": alice_user["id"],
                "project_id": project_id,
                "items": [{"name": "Line-1", "type": "Line"}, {"name": "Line-2", "type": "Line"}],
            },
        )
        assert resp.status_code == 201
        task = resp.json()
        assert task["status"] == "Assigned"

        assert (await client.get("/api/tasks", headers=bob)).json() == []
        assert len((await client.get("/api/tasks", headers=alice)).json()) == 1

        bad_back = await client.put(
            f"/api/tasks/{task['id']}/status", headers=alice, json={"status": "Assigned"}
        )
        assert bad_back.status_code == 200  # same status, nothing to do

        early = await client.put(
            f"/api/tasks/{task['id']}/status", headers=alice, json={"status": "Completed"}
        )
        assert early.status_code == 409
        assert early.json()["error"] == "INVALID_TRANSITION"

        for item in task["items"]:
            resp = await client.put(
                f"/api/tasks/{task['id']}/items/{item['id']}", headers=alice, json={"blocks": 3}
            )
            assert resp.status_code == 200
        assert resp.json()["status"] == "Completed"
        assert resp.json()["progress"] == 100

        counts = (await client.get("/api/tasks/status-counts", headers=lead)).json()
        assert counts == {"assigned": 0, "inProgress": 0, "completed": 1}

        comment = await client.post(
            f"/api/tasks/{task['id']}/comments", headers=alice, json={"comment": "All done"}
        )
        assert comment.status_code == 201
        listed = (await client.get(f"/api/tasks/{task['id']}/comments", headers=lead)).json()
        assert [c["comment"] for c in listed] == ["All done"]

        audit = await client.get("/api/audit-logs", headers=lead)
        assert audit.status_code == 403
        pm, _ = await _login(client, "pm")
        types = {e["type"] for e in (await client.get("/api/audit-logs", headers=pm)).json()}
        assert types == {"Task Assignment", "Task Completion"}

    async def test_redline_pid_is_marked_up_line_by_line(self, client):
        lead, _ = await _login(client, "lead")
        alice, alice_user = await _login(client, "alice")
        project_id, pid_id = await _pid(client, lead, "PID-200")

        task = (
            await client.post(
                "/api/tasks",
                headers=lead,
                json={
                    "task_type": "Redline",
                    "assignee_id": alice_user["id"],
                    "project_id": project_id,
                    "items": [{"name": "PID-200", "type": "PID", "item_id": pid_id}],
                },
            )
        ).json()
        assert len(task["lines"]) == 2

        early = await client.put(
            f"/api/tasks/{task['id']}/items/{task['items'][0]['id']}",
            headers=alice,
            json={"blocks": 1},
        )
        assert early.status_code == 409
        assert early.json()["error"] == "LINES_INCOMPLETE"

        for line in task["lines"]:
            resp = await client.put(
                f"/api/tasks/{task['id']}/lines/{line['id']}", headers=alice, json={"blocks": 2}
            )
            assert resp.status_code == 200
        assert resp.json()["status"] == "Completed"
        assert resp.json()["items"][0]["blocks"] == 4


class TestRequestValidation:
    async def test_missing_body_fields_map_to_validation_error(self, client):
        lead, _ = await _login(client, "lead")
        resp = await client.post(
            "/api/pid-work/mark-complete", headers=lead, json={"user_id": "x"}
        )
        assert resp.status_code == 400
        body = resp.json()
        assert body["error"] == "VALIDATION_ERROR"
        assert {"pid_id", "task_type", "status"} <= set(body["fields"])

    async def test_wrong_type_maps_to_validation_error(self, client):
        lead, _ = await _login(client, "lead")
        resp = await client.put("/api/tasks/t1/items/i1", headers=lead, json={"blocks": "many"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "VALIDATION_ERROR"
