"""Tests for agentsched.storage.store."""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from agentsched.core.clock import to_iso
from agentsched.core.errors import DispatchRaceLost
from agentsched.storage.store import SchedulerStore

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store(tmp_path):
    s = SchedulerStore(str(tmp_path / "test.db"))
    s.add_agent("reporter", "Daily report agent", agent_id=1)
    return s


def _add(store, next_run=T0, **kw):
    return store.add_schedule(1, "INTERVAL", next_run, interval=5, now=T0, **kw)


def test_agent_crud(store):
    assert store.agent_exists(1)
    assert not store.agent_exists(2)
    assert store.get_agent(1)["name"] == "reporter"
    new_id = store.add_agent("summarizer")
    assert new_id != 1
    assert [a["id"] for a in store.list_agents()] == [1, new_id]


def test_duplicate_agent_id(store):
    with pytest.raises(sqlite3.IntegrityError):
        store.add_agent("again", agent_id=1)


def test_schedule_requires_agent(store):
    with pytest.raises(sqlite3.IntegrityError):
        store.add_schedule(99, "INTERVAL", T0, interval=5)


def test_schedule_roundtrip(store):
    sid = _add(store, metadata={"input": "summarize"})
    row = store.get_schedule(sid)
    assert row["status"] == "active"
    assert row["next_run"] == to_iso(T0)
    assert row["metadata"] == {"input": "summarize"}
    assert row["last_run"] is None
    assert store.get_schedule(999) is None


def test_due_schedules(store):
    early = _add(store, next_run=T0 - timedelta(minutes=1))
    due_now = _add(store, next_run=T0)
    _add(store, next_run=T0 + timedelta(seconds=1))
    paused = _add(store, next_run=T0 - timedelta(minutes=2))
    store.set_status(paused, "paused", from_statuses=("active",))

    due = store.get_due_schedules(T0)
    assert [r["id"] for r in due] == [early, due_now]


def test_list_and_count_by_status(store):
    a = _add(store)
    b = _add(store)
    store.set_status(b, "paused", from_statuses=("active",))
    assert [r["id"] for r in store.list_schedules("active")] == [a]
    assert len(store.list_schedules()) == 2
    assert store.count_schedules_by_status() == {"active": 1, "paused": 1}


def test_set_status_guarded(store):
    sid = _add(store)
    assert store.set_status(sid, "paused", from_statuses=("active",))
    assert not store.set_status(sid, "paused", from_statuses=("active",))
    assert store.get_schedule(sid)["next_run"] == to_iso(T0)


def test_resume_schedule(store):
    sid = _add(store)
    assert not store.resume_schedule(sid, T0 + timedelta(minutes=5))  # not paused
    store.set_status(sid, "paused", from_statuses=("active",))
    assert store.resume_schedule(sid, T0 + timedelta(minutes=5))
    row = store.get_schedule(sid)
    assert row["status"] == "active"
    assert row["next_run"] == to_iso(T0 + timedelta(minutes=5))


def test_resume_exhausted_completes(store):
    sid = _add(store)
    store.set_status(sid, "paused", from_statuses=("active",))
    assert store.resume_schedule(sid, None)
    row = store.get_schedule(sid)
    assert row["status"] == "completed"
    assert row["next_run"] is None


def test_claim_firing_once(store):
    sid = _add(store)
    nxt = T0 + timedelta(minutes=5)
    store.claim_firing(sid, T0, nxt, now=T0)
    with pytest.raises(DispatchRaceLost):
        store.claim_firing(sid, T0, nxt, now=T0)
    assert store.get_schedule(sid)["next_run"] == to_iso(nxt)


def test_claim_firing_final_completes(store):
    sid = _add(store)
    store.claim_firing(sid, T0, None, now=T0)
    row = store.get_schedule(sid)
    assert row["status"] == "completed"
    assert row["next_run"] is None
    assert store.get_due_schedules(T0 + timedelta(days=1)) == []


def test_claim_firing_paused_loses(store):
    sid = _add(store)
    store.set_status(sid, "paused", from_statuses=("active",))
    with pytest.raises(DispatchRaceLost):
        store.claim_firing(sid, T0, T0 + timedelta(minutes=5))


def test_runs_newest_first_with_limit(store):
    sid = _add(store)
    ids = [store.create_run(sid, T0 + timedelta(minutes=i)) for i in range(3)]
    runs = store.list_runs(sid)
    assert [r["id"] for r in runs] == ids[::-1]
    assert runs[0]["status"] == "running"
    assert [r["id"] for r in store.list_runs(sid, limit=2)] == ids[:0:-1]


def test_finish_run_once(store):
    sid = _add(store)
    rid = store.create_run(sid, T0, scheduled_for=T0)
    end = T0 + timedelta(seconds=3)
    assert store.finish_run(rid, "success", end, metadata={"output": "ok"})
    assert not store.finish_run(rid, "failed", end, error="late")

    run = store.get_run(rid)
    assert run["status"] == "success"
    assert run["error"] is None
    assert run["metadata"] == {"output": "ok"}
    assert run["end_time"] == to_iso(end)
    assert store.get_schedule(sid)["last_run"] == to_iso(T0)


def test_last_run_is_monotonic(store):
    sid = _add(store)
    older = store.create_run(sid, T0)
    newer = store.create_run(sid, T0 + timedelta(minutes=5))
    store.finish_run(newer, "success", T0 + timedelta(minutes=6))
    store.finish_run(older, "failed", T0 + timedelta(minutes=7), error="slow")
    assert store.get_schedule(sid)["last_run"] == to_iso(T0 + timedelta(minutes=5))


def test_delete_cascades_to_runs(store):
    sid = _add(store)
    r1 = store.create_run(sid, T0)
    r2 = store.create_run(sid, T0 + timedelta(minutes=5))
    assert store.delete_schedule(sid)
    assert store.get_schedule(sid) is None
    assert store.get_run(r1) is None and store.get_run(r2) is None
    assert store.list_runs(sid) == []
    assert not store.delete_schedule(sid)


def test_finish_run_after_delete_is_discarded(store):
    sid = _add(store)
    rid = store.create_run(sid, T0)
    store.delete_schedule(sid)
    assert not store.finish_run(rid, "success", T0 + timedelta(seconds=1))


def test_fail_interrupted_runs(store):
    sid = _add(store)
    done = store.create_run(sid, T0)
    store.finish_run(done, "success", T0 + timedelta(minutes=1))
    running = store.create_run(sid, T0 + timedelta(minutes=5))
    assert store.get_schedule(sid)["last_run"] == to_iso(T0)

    assert store.fail_interrupted_runs(T0 + timedelta(hours=1), "restarted") == 1
    assert store.get_run(running)["status"] == "failed"
    assert store.get_run(running)["error"] == "restarted"
    assert store.get_run(done)["status"] == "success"
    assert store.get_schedule(sid)["last_run"] == to_iso(T0 + timedelta(minutes=5))


def test_fail_interrupted_runs_never_moves_last_run_back(store):
    sid = _add(store)
    stale = store.create_run(sid, T0)
    later = store.create_run(sid, T0 + timedelta(minutes=5))
    store.finish_run(later, "success", T0 + timedelta(minutes=6))

    assert store.fail_interrupted_runs(T0 + timedelta(hours=1), "restarted") == 1
    assert store.get_run(stale)["status"] == "failed"
    assert store.get_schedule(sid)["last_run"] == to_iso(T0 + timedelta(minutes=5))
