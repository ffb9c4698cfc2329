from collections.abc import AsyncGenerator
from datetime import date

import httpx
import pytest
import pytest_asyncio

from discipline.api import app
from discipline.config import settings

from .helpers import add_task


@pytest_asyncio.fixture
async def client(database: str) -> AsyncGenerator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.mark.asyncio
async def test_create_task_returns_camel_case(client) -> None:
    resp = await client.post(
        "/api/tasks",
        json={"title": "Draft proposal", "urgency": "P2", "dueDate": "2026-03-12", "followUpItem": True},
    )

    assert resp.status_code == 201
    task = resp.json()["task"]
    assert task["title"] == "Draft proposal"
    assert task["dueDate"] == "2026-03-12"
    assert task["followUpItem"] is True
    assert task["rolloverCount"] == 0
    assert task["realityCheckStage"] == "none"


@pytest.mark.asyncio
async def test_create_over_capacity_is_409(client, session) -> None:
    for _ in range(3):
        await add_task(session, urgency="P1")

    resp = await client.post("/api/tasks", json={"title": "One more", "urgency": "P1"})

    assert resp.status_code == 409
    assert resp.json() == {
        "message": "Priority P1 limit reached",
        "priority": "P1",
        "limit": 3,
        "current": 3,
    }

    forced = await client.post("/api/tasks", json={"title": "One more", "urgency": "P1", "force": True})
    assert forced.status_code == 201


@pytest.mark.asyncio
async def test_create_without_title_is_400(client) -> None:
    resp = await client.post("/api/tasks", json={"urgency": "P2"})
    assert resp.status_code == 400
    assert resp.json()["message"] == "Task title is required"


@pytest.mark.asyncio
async def test_malformed_body_is_400(client) -> None:
    resp = await client.post("/api/tasks/bulk/priority", json={"ids": [], "priority": "P2"})
    assert resp.status_code == 400
    assert resp.json()["message"].startswith("Invalid payload")


@pytest.mark.asyncio
async def test_priority_check(client, session) -> None:
    await add_task(session, urgency="P1", title="Only one")

    resp = await client.get("/api/priority-check", params={"priority": "P1"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["allowed"] is True
    assert body["current"] == 1
    assert body["limit"] == 3
    assert [t["title"] for t in body["tasksAtPriority"]] == ["Only one"]


@pytest.mark.asyncio
@pytest.mark.parametrize("params", [{}, {"priority": "P7"}])
async def test_priority_check_invalid(client, params) -> None:
    resp = await client.get("/api/priority-check", params=params)
    assert resp.status_code == 400
    assert resp.json() == {"message": "Invalid priority value"}


@pytest.mark.asyncio
async def test_priority_usage(client) -> None:
    resp = await client.get("/api/priority-usage")
    assert resp.status_code == 200
    assert [s["priority"] for s in resp.json()] == ["P1", "P2", "P3", "P4"]
    assert resp.json()[3]["limit"] is None


@pytest.mark.asyncio
async def test_rollover_requires_token(client, monkeypatch) -> None:
    monkeypatch.setattr(settings, "cron_secret", "s3cret")

    assert (await client.post("/api/rollover")).status_code == 401
    resp = await client.post("/api/rollover", headers={"Authorization": "Bearer wrong"})
    assert resp.status_code == 401
    assert resp.json() == {"message": "Unauthorized"}


@pytest.mark.asyncio
async def test_rollover_without_configured_secret(client, monkeypatch) -> None:
    monkeypatch.setattr(settings, "cron_secret", None)
    resp = await client.post("/api/rollover", headers={"Authorization": "Bearer anything"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_rollover_sweeps_overdue_tasks(client, session, monkeypatch) -> None:
    monkeypatch.setattr(settings, "cron_secret", "s3cret")
    overdue = await add_task(session, due_date=date(2020, 1, 1))
    await add_task(session, due_date=date(2020, 1, 1), follow_up_item=True)

    resp = await client.post("/api/rollover", headers={"Authorization": "Bearer s3cret"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["rolledOver"] == 1
    assert body["autoArchived"] == 0
    assert [t["id"] for t in body["tasks"]] == [overdue.id]
    assert body["tasks"][0]["rolloverCount"] == 1


@pytest.mark.asyncio
async def test_decision_flow(client, session) -> None:
    task = await add_task(session, urgency="P2", rollover_count=3, reality_check_stage="warning")

    pending = await client.get("/api/reality-check/pending")
    assert [t["id"] for t in pending.json()["tasks"]] == [task.id]

    resp = await client.post(f"/api/reality-check/{task.id}/decision", json={"decision": "someday"})
    assert resp.status_code == 200
    assert resp.json()["message"] == "Moved to Someday"
    assert resp.json()["task"]["status"] == "waiting"
    assert resp.json()["task"]["dueDate"] is None

    again = await client.post(f"/api/reality-check/{task.id}/decision", json={"decision": "keep"})
    assert again.status_code == 400
    assert again.json() == {"message": "Task does not require a reality check"}


@pytest.mark.asyncio
async def test_decision_errors(client, session) -> None:
    task = await add_task(session, reality_check_stage="alert")

    missing = await client.post("/api/reality-check/nope/decision", json={"decision": "keep"})
    assert missing.status_code == 404
    assert missing.json() == {"message": "Task not found"}

    bad = await client.post(f"/api/reality-check/{task.id}/decision", json={"decision": "auto_archive"})
    assert bad.status_code == 400
    assert bad.json() == {"message": "Unsupported decision"}


@pytest.mark.asyncio
async def test_task_lifecycle(client) -> None:
    created = (await client.post("/api/tasks", json={"title": "Lifecycle", "urgency": "P3"})).json()
    task_id = created["task"]["id"]

    patched = await client.patch(f"/api/tasks/{task_id}", json={"urgency": "P2", "notes": "soon"})
    assert patched.status_code == 200
    assert patched.json()["task"]["urgency"] == "P2"

    moved = await client.post(f"/api/tasks/{task_id}/reschedule", json={"dueDate": "2026-12-01"})
    assert moved.json()["task"]["rescheduleCount"] == 1

    archived = await client.request("DELETE", f"/api/tasks/{task_id}", json={"reason": "Dropped"})
    assert archived.status_code == 200
    assert archived.json()["task"]["status"] == "archived"

    listing = await client.get("/api/tasks")
    assert listing.json()["tasks"] == []
    listing = await client.get("/api/tasks", params={"includeArchived": "true"})
    assert [t["id"] for t in listing.json()["tasks"]] == [task_id]

    assert (await client.get("/api/tasks/unknown")).status_code == 404


@pytest.mark.asyncio
async def test_list_status_filter(client, session) -> None:
    open_task = await add_task(session, title="Open one")
    done = await add_task(session, title="Done one", status="completed")

    completed = await client.get("/api/tasks", params={"status": "completed"})
    assert [t["id"] for t in completed.json()["tasks"]] == [done.id]

    unknown = await client.get("/api/tasks", params={"status": "bogus"})
    assert unknown.status_code == 200
    assert {t["id"] for t in unknown.json()["tasks"]} == {open_task.id, done.id}


@pytest.mark.asyncio
async def test_bulk_priority(client, session) -> None:
    a = await add_task(session, urgency="P3")
    b = await add_task(session, urgency="P3")

    resp = await client.post(
        "/api/tasks/bulk/priority", json={"ids": [a.id, b.id], "priority": "P1", "reason": "Launch"}
    )

    assert resp.status_code == 200
    assert {t["urgency"] for t in resp.json()["tasks"]} == {"P1"}


@pytest.mark.asyncio
async def test_complete(client, session) -> None:
    task = await add_task(session)
    resp = await client.post(f"/api/tasks/{task.id}/complete")
    assert resp.json()["task"]["status"] == "completed"
    assert resp.json()["task"]["completedAt"] is not None
