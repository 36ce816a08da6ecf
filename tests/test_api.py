"""Tests for agentsched.api (Control API over HTTP)."""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from agentsched.api.app import create_app
from agentsched.core.config import Config
from agentsched.core.cron.service import ScheduleService
from agentsched.storage.store import SchedulerStore


@pytest.fixture
def store(tmp_path):
    s = SchedulerStore(str(tmp_path / "test.db"))
    s.add_agent("reporter", "Weekly report agent", agent_id=1)
    return s


@pytest.fixture
def app(tmp_path, store):
    """Create test app with a tmp database; the trigger loop is not started."""
    config = Config(database={"path": str(tmp_path / "test.db")}, scheduler={"run_summary_limit": 2})
    application = create_app()
    # Override lifespan state manually
    application.state.config = config
    application.state.store = store
    application.state.service = ScheduleService(store)
    return application


@pytest.fixture
async def client(app):
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as c:
        yield c


def _interval_body(**overrides):
    body = {"agentId": 1, "type": "INTERVAL", "interval": 5, "metadata": {"input": "summarize"}}
    body.update(overrides)
    return body


async def _create(client, **overrides):
    resp = await client.post("/scheduler", json=_interval_body(**overrides))
    assert resp.status_code == 201, resp.text
    return resp.json()


# --- Health ---


async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["schedulerRunning"] is False
    assert data["inFlightRuns"] == 0


# --- Agents ---


async def test_register_and_get_agent(client):
    resp = await client.post("/agents", json={"id": 7, "name": "triage", "description": "Inbox triage"})
    assert resp.status_code == 201
    assert resp.json()["id"] == 7
    assert "createdAt" in resp.json()

    resp = await client.post("/agents", json={"id": 7, "name": "dup"})
    assert resp.status_code == 409

    resp = await client.get("/agents/7")
    assert resp.json()["name"] == "triage"

    resp = await client.get("/agents")
    assert [a["id"] for a in resp.json()] == [1, 7]


async def test_agent_not_found(client):
    resp = await client.get("/agents/99")
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Agent 99 not found"


# --- Create ---


async def test_create_interval(client):
    data = await _create(client)
    assert data["type"] == "INTERVAL"
    assert data["interval"] == 5
    assert data["status"] == "active"
    assert data["agentId"] == 1
    assert data["agent"] == {"id": 1, "name": "reporter", "description": "Weekly report agent"}
    assert data["runs"] == []
    assert data["lastRun"] is None
    assert data["metadata"] == {"input": "summarize"}

    next_run = datetime.fromisoformat(data["nextRun"].replace("Z", "+00:00"))
    created = datetime.fromisoformat(data["createdAt"].replace("Z", "+00:00"))
    assert next_run - created == timedelta(minutes=5)


async def test_create_lowercase_type(client):
    data = await _create(client, type="interval")
    assert data["type"] == "INTERVAL"


async def test_create_cron(client):
    data = await _create(
        client, type="CRON", interval=None, cronExpression="0 9 * * 1-5", timezone="Europe/Istanbul"
    )
    assert data["cronExpression"] == "0 9 * * 1-5"
    assert data["timezone"] == "Europe/Istanbul"
    next_run = datetime.fromisoformat(data["nextRun"].replace("Z", "+00:00"))
    assert next_run.astimezone(timezone.utc).hour == 6


async def test_create_fixed(client):
    data = await _create(client, type="FIXED", interval=None, fixedTime="2099-01-01T09:00:00Z")
    assert data["fixedTime"].startswith("2099-01-01T09:00:00")
    assert data["nextRun"].startswith("2099-01-01T09:00:00")


@pytest.mark.parametrize(
    "overrides",
    [
        {"interval": 0},
        {"interval": None},
        {"cronExpression": "* * * * *"},
        {"type": "CRON", "interval": None, "cronExpression": "every monday"},
        {"type": "CRON", "interval": None, "cronExpression": "0 9 * * *", "timezone": "Nowhere/City"},
        {"type": "FIXED", "interval": None, "fixedTime": "2001-01-01T00:00:00Z"},
    ],
)
async def test_create_invalid_rule(client, store, overrides):
    resp = await client.post("/scheduler", json=_interval_body(**overrides))
    assert resp.status_code == 400
    assert resp.json()["detail"]
    assert store.list_schedules() == []


async def test_create_malformed_body(client):
    resp = await client.post("/scheduler", json={"agentId": 1, "type": "HOURLY"})
    assert resp.status_code == 422


async def test_create_unknown_agent(client):
    resp = await client.post("/scheduler", json=_interval_body(agentId=42))
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Agent 42 not found"


# --- Read ---


async def test_list_and_get(client):
    a = await _create(client)
    b = await _create(client, interval=10)
    await client.post(f"/scheduler/{b['id']}/pause")

    resp = await client.get("/scheduler")
    assert [s["id"] for s in resp.json()] == [a["id"], b["id"]]

    resp = await client.get("/scheduler", params={"status": "paused"})
    assert [s["id"] for s in resp.json()] == [b["id"]]

    resp = await client.get(f"/scheduler/{a['id']}")
    assert resp.status_code == 200
    assert resp.json()["id"] == a["id"]


async def test_get_missing(client):
    resp = await client.get("/scheduler/999")
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Schedule 999 not found"


async def test_nested_runs_limited(client, store):
    s = await _create(client)
    t0 = datetime(2026, 1, 1, tzinfo=timezone.utc)
    for i in range(3):
        store.create_run(s["id"], t0 + timedelta(minutes=i))

    runs = (await client.get(f"/scheduler/{s['id']}")).json()["runs"]
    assert len(runs) == 2
    assert runs[0]["startTime"].startswith("2026-01-01T00:02:00")


# --- Pause / resume ---


async def test_pause_resume(client):
    s = await _create(client)

    resp = await client.post(f"/scheduler/{s['id']}/pause")
    assert resp.status_code == 200
    assert resp.json()["status"] == "paused"
    assert resp.json()["nextRun"] == s["nextRun"]

    resp = await client.post(f"/scheduler/{s['id']}/pause")
    assert resp.json()["status"] == "paused"

    resp = await client.post(f"/scheduler/{s['id']}/resume")
    assert resp.status_code == 200
    assert resp.json()["status"] == "active"


async def test_pause_completed_conflict(client, store):
    s = await _create(client, type="FIXED", interval=None, fixedTime="2099-01-01T09:00:00Z")
    row = store.get_schedule(s["id"])
    store.claim_firing(s["id"], datetime.fromisoformat(row["next_run"]), None)

    resp = await client.post(f"/scheduler/{s['id']}/pause")
    assert resp.status_code == 409
    resp = await client.post(f"/scheduler/{s['id']}/resume")
    assert resp.status_code == 409


async def test_pause_missing(client):
    resp = await client.post("/scheduler/999/pause")
    assert resp.status_code == 404


# --- Delete ---


async def test_delete(client, store):
    s = await _create(client)
    store.create_run(s["id"], datetime(2026, 1, 1, tzinfo=timezone.utc))

    resp = await client.delete(f"/scheduler/{s['id']}")
    assert resp.status_code == 200
    assert resp.json() == {"status": "deleted", "id": s["id"]}

    assert (await client.get(f"/scheduler/{s['id']}")).status_code == 404
    assert (await client.delete(f"/scheduler/{s['id']}")).status_code == 404
    assert store.list_runs(s["id"]) == []


# --- Runs / logs ---


async def test_runs_and_logs_alias(client, store):
    s = await _create(client)
    t0 = datetime(2026, 1, 1, tzinfo=timezone.utc)
    first = store.create_run(s["id"], t0, scheduled_for=t0)
    second = store.create_run(s["id"], t0 + timedelta(minutes=5))
    store.finish_run(first, "failed", t0 + timedelta(seconds=2), error="boom")

    for path in ("runs", "logs"):
        resp = await client.get(f"/scheduler/{s['id']}/{path}")
        assert resp.status_code == 200
        data = resp.json()
        assert [r["id"] for r in data] == [second, first]
        assert data[1]["status"] == "failed"
        assert data[1]["error"] == "boom"
        assert data[1]["scheduleId"] == s["id"]
        assert data[0]["endTime"] is None
        assert data[1]["createdAt"] == data[1]["startTime"]

    resp = await client.get(f"/scheduler/{s['id']}/logs", params={"limit": 1})
    assert [r["id"] for r in resp.json()] == [second]


async def test_runs_missing_schedule(client):
    resp = await client.get("/scheduler/999/runs")
    assert resp.status_code == 404


# --- Lifespan ---


def test_lifespan_wires_state(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("AGENTSCHED_CONFIG", raising=False)
    monkeypatch.setenv("AGENTSCHED_DATABASE__PATH", str(tmp_path / "life.db"))
    monkeypatch.setenv("AGENTSCHED_SCHEDULER__TICK_SECONDS", "3600")

    with TestClient(create_app()) as c:
        data = c.get("/health").json()
        assert data["schedulerRunning"] is True
        assert isinstance(c.app.state.store, SchedulerStore)
    assert (tmp_path / "life.db").exists()
