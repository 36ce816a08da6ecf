"""SQLite-backed scheduler store.

Three tables:
    agents, schedules, schedule_runs

The store is the single source of truth for ``next_run`` and ``status``.
The claim step is a compare-and-swap on ``next_run`` so concurrent trigger
loops (several replicas against one database) dispatch each firing at most
once. Deleting a schedule cascades to its runs.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from loguru import logger

from agentsched.core.clock import to_iso, utc_now
from agentsched.core.cron.types import RunStatus, ScheduleStatus
from agentsched.core.errors import DispatchRaceLost


class SchedulerStore:
    """SQLite scheduler persistence — schedules + run ledger."""

    def __init__(self, db_path: str = "data/agentsched.db"):
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        logger.info(f"SchedulerStore initialized: {db_path}")

    @contextmanager
    def _get_conn(self):
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
        finally:
            conn.close()

    def _init_db(self):
        with self._get_conn() as conn:
            conn.executescript(_SCHEMA)
            conn.commit()

    # ════════════════════════════════════════════════════════════
    # AGENTS (mirror of the externally owned agent entity)
    # ════════════════════════════════════════════════════════════

    def add_agent(
        self,
        name: str,
        description: str | None = None,
        agent_id: int | None = None,
    ) -> int:
        """Register an agent. Returns its id (explicit id kept when given)."""
        with self._get_conn() as conn:
            cur = conn.execute(
                "INSERT INTO agents (id, name, description, created_at) VALUES (?, ?, ?, ?)",
                (agent_id, name, description, to_iso(utc_now())),
            )
            conn.commit()
        logger.info(f"Agent registered: {cur.lastrowid} ({name})")
        return cur.lastrowid

    def get_agent(self, agent_id: int) -> dict[str, Any] | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM agents WHERE id = ?", (agent_id,)
            ).fetchone()
        return dict(row) if row else None

    def agent_exists(self, agent_id: int) -> bool:
        with self._get_conn() as conn:
            return (
                conn.execute("SELECT 1 FROM agents WHERE id = ?", (agent_id,)).fetchone()
                is not None
            )

    def list_agents(self) -> list[dict[str, Any]]:
        with self._get_conn() as conn:
            rows = conn.execute("SELECT * FROM agents ORDER BY id").fetchall()
        return [dict(r) for r in rows]

    # ════════════════════════════════════════════════════════════
    # SCHEDULES
    # ════════════════════════════════════════════════════════════

    def add_schedule(
        self,
        agent_id: int,
        type: str,
        next_run: datetime | None,
        interval: int | None = None,
        cron_expression: str | None = None,
        timezone: str = "UTC",
        fixed_time: datetime | None = None,
        metadata: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> int:
        """Persist a validated schedule in ``active`` status. Returns its id."""
        stamp = to_iso(now or utc_now())
        with self._get_conn() as conn:
            cur = conn.execute(
                """INSERT INTO schedules
                   (agent_id, type, interval, cron_expression, timezone, fixed_time,
                    metadata, status, next_run, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    agent_id,
                    type,
                    interval,
                    cron_expression,
                    timezone,
                    to_iso(fixed_time) if fixed_time else None,
                    json.dumps(metadata or {}, ensure_ascii=False),
                    ScheduleStatus.ACTIVE.value,
                    to_iso(next_run) if next_run else None,
                    stamp,
                    stamp,
                ),
            )
            conn.commit()
        return cur.lastrowid

    def get_schedule(self, schedule_id: int) -> dict[str, Any] | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM schedules WHERE id = ?", (schedule_id,)
            ).fetchone()
        return _decode(row) if row else None

    def list_schedules(self, status: str | None = None) -> list[dict[str, Any]]:
        with self._get_conn() as conn:
            if status:
                rows = conn.execute(
                    "SELECT * FROM schedules WHERE status = ? ORDER BY id", (status,)
                ).fetchall()
            else:
                rows = conn.execute("SELECT * FROM schedules ORDER BY id").fetchall()
        return [_decode(r) for r in rows]

    def get_due_schedules(self, now: datetime) -> list[dict[str, Any]]:
        """Active schedules whose next_run is at or before ``now``, oldest first."""
        with self._get_conn() as conn:
            rows = conn.execute(
                """SELECT * FROM schedules
                   WHERE status = ? AND next_run IS NOT NULL AND next_run <= ?
                   ORDER BY next_run, id""",
                (ScheduleStatus.ACTIVE.value, to_iso(now)),
            ).fetchall()
        return [_decode(r) for r in rows]

    def count_schedules_by_status(self) -> dict[str, int]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS n FROM schedules GROUP BY status"
            ).fetchall()
        return {r["status"]: r["n"] for r in rows}

    def set_status(
        self,
        schedule_id: int,
        status: str,
        from_statuses: tuple[str, ...],
        now: datetime | None = None,
    ) -> bool:
        """Move a schedule to ``status`` if it is currently in ``from_statuses``.

        ``next_run`` is left untouched. Returns True if the row changed.
        """
        placeholders = ",".join("?" for _ in from_statuses)
        with self._get_conn() as conn:
            cur = conn.execute(
                f"""UPDATE schedules SET status = ?, updated_at = ?
                    WHERE id = ? AND status IN ({placeholders})""",
                (status, to_iso(now or utc_now()), schedule_id, *from_statuses),
            )
            conn.commit()
        return cur.rowcount > 0

    def resume_schedule(
        self, schedule_id: int, next_run: datetime | None, now: datetime | None = None
    ) -> bool:
        """paused → active with a fresh next_run; paused → completed when exhausted."""
        status = ScheduleStatus.ACTIVE if next_run else ScheduleStatus.COMPLETED
        with self._get_conn() as conn:
            cur = conn.execute(
                """UPDATE schedules SET status = ?, next_run = ?, updated_at = ?
                   WHERE id = ? AND status = ?""",
                (
                    status.value,
                    to_iso(next_run) if next_run else None,
                    to_iso(now or utc_now()),
                    schedule_id,
                    ScheduleStatus.PAUSED.value,
                ),
            )
            conn.commit()
        return cur.rowcount > 0

    def delete_schedule(self, schedule_id: int) -> bool:
        """Delete a schedule and (cascade) its runs. Returns True if it existed."""
        with self._get_conn() as conn:
            cur = conn.execute("DELETE FROM schedules WHERE id = ?", (schedule_id,))
            conn.commit()
        return cur.rowcount > 0

    def claim_firing(
        self,
        schedule_id: int,
        expected_next_run: datetime,
        new_next_run: datetime | None,
        now: datetime | None = None,
    ) -> None:
        """Claim the firing at ``expected_next_run`` and advance the schedule.

        Compare-and-swap: succeeds only while the row is still active with
        the expected next_run. A None ``new_next_run`` completes the schedule.
        Raises DispatchRaceLost when another pass got there first.
        """
        if new_next_run is None:
            status, next_value = ScheduleStatus.COMPLETED.value, None
        else:
            status, next_value = ScheduleStatus.ACTIVE.value, to_iso(new_next_run)
        with self._get_conn() as conn:
            cur = conn.execute(
                """UPDATE schedules SET status = ?, next_run = ?, updated_at = ?
                   WHERE id = ? AND status = ? AND next_run = ?""",
                (
                    status,
                    next_value,
                    to_iso(now or utc_now()),
                    schedule_id,
                    ScheduleStatus.ACTIVE.value,
                    to_iso(expected_next_run),
                ),
            )
            conn.commit()
        if cur.rowcount == 0:
            raise DispatchRaceLost(schedule_id)

    # ════════════════════════════════════════════════════════════
    # RUN LEDGER
    # ════════════════════════════════════════════════════════════

    def create_run(
        self,
        schedule_id: int,
        start_time: datetime,
        scheduled_for: datetime | None = None,
    ) -> int:
        """Record a dispatched firing in ``running`` state. Returns the run id."""
        with self._get_conn() as conn:
            cur = conn.execute(
                """INSERT INTO schedule_runs (schedule_id, status, start_time, scheduled_for)
                   VALUES (?, ?, ?, ?)""",
                (
                    schedule_id,
                    RunStatus.RUNNING.value,
                    to_iso(start_time),
                    to_iso(scheduled_for) if scheduled_for else None,
                ),
            )
            conn.commit()
        return cur.lastrowid

    def get_run(self, run_id: int) -> dict[str, Any] | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM schedule_runs WHERE id = ?", (run_id,)
            ).fetchone()
        return _decode(row) if row else None

    def list_runs(
        self, schedule_id: int, limit: int | None = None
    ) -> list[dict[str, Any]]:
        """Runs of a schedule, newest first."""
        query = "SELECT * FROM schedule_runs WHERE schedule_id = ? ORDER BY start_time DESC, id DESC"
        params: tuple = (schedule_id,)
        if limit is not None:
            query += " LIMIT ?"
            params = (schedule_id, limit)
        with self._get_conn() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_decode(r) for r in rows]

    def finish_run(
        self,
        run_id: int,
        status: str,
        end_time: datetime,
        error: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """Write a run's terminal state and the owning schedule's last_run.

        Applies only to a run still ``running``; returns False when the run is
        gone (schedule deleted) or already terminal.
        """
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT schedule_id, start_time FROM schedule_runs WHERE id = ? AND status = ?",
                (run_id, RunStatus.RUNNING.value),
            ).fetchone()
            if not row:
                return False
            cur = conn.execute(
                """UPDATE schedule_runs SET status = ?, end_time = ?, error = ?, metadata = ?
                   WHERE id = ? AND status = ?""",
                (
                    status,
                    to_iso(end_time),
                    error,
                    json.dumps(metadata or {}, ensure_ascii=False),
                    run_id,
                    RunStatus.RUNNING.value,
                ),
            )
            if cur.rowcount == 0:
                conn.rollback()
                return False
            conn.execute(
                """UPDATE schedules SET last_run = ?, updated_at = ?
                   WHERE id = ? AND (last_run IS NULL OR last_run < ?)""",
                (row["start_time"], to_iso(end_time), row["schedule_id"], row["start_time"]),
            )
            conn.commit()
        return True

    def fail_interrupted_runs(self, now: datetime, error: str) -> int:
        """Mark every ``running`` run as failed (process restarted mid-run).

        Each affected schedule's last_run moves forward to its latest
        interrupted start, as a completed run would have left it.
        """
        with self._get_conn() as conn:
            started = conn.execute(
                """SELECT schedule_id, MAX(start_time) AS start_time FROM schedule_runs
                   WHERE status = ? GROUP BY schedule_id""",
                (RunStatus.RUNNING.value,),
            ).fetchall()
            for row in started:
                conn.execute(
                    """UPDATE schedules SET last_run = ?, updated_at = ?
                       WHERE id = ? AND (last_run IS NULL OR last_run < ?)""",
                    (row["start_time"], to_iso(now), row["schedule_id"], row["start_time"]),
                )
            cur = conn.execute(
                """UPDATE schedule_runs SET status = ?, end_time = ?, error = ?
                   WHERE status = ?""",
                (RunStatus.FAILED.value, to_iso(now), error, RunStatus.RUNNING.value),
            )
            conn.commit()
        if cur.rowcount:
            logger.warning(f"Marked {cur.rowcount} interrupted run(s) as failed")
        return cur.rowcount


def _decode(row: sqlite3.Row) -> dict[str, Any]:
    data = dict(row)
    if "metadata" in data:
        data["metadata"] = json.loads(data["metadata"] or "{}")
    return data


# ════════════════════════════════════════════════════════════
# SQL SCHEMA
# ════════════════════════════════════════════════════════════

_SCHEMA = """
-- 1. Agents (externally owned, mirrored for existence checks + nested DTOs)
CREATE TABLE IF NOT EXISTS agents (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    description TEXT,
    created_at TEXT NOT NULL
);

-- 2. Schedules (recurrence rule + status + bookkeeping)
CREATE TABLE IF NOT EXISTS schedules (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    agent_id INTEGER NOT NULL,
    type TEXT NOT NULL,
    interval INTEGER,
    cron_expression TEXT,
    timezone TEXT NOT NULL DEFAULT 'UTC',
    fixed_time TEXT,
    metadata TEXT NOT NULL DEFAULT '{}',
    status TEXT NOT NULL DEFAULT 'active',
    last_run TEXT,
    next_run TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (agent_id) REFERENCES agents(id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_schedules_due ON schedules(status, next_run);

-- 3. Schedule runs (one row per firing)
CREATE TABLE IF NOT EXISTS schedule_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    schedule_id INTEGER NOT NULL,
    status TEXT NOT NULL DEFAULT 'running',
    start_time TEXT NOT NULL,
    end_time TEXT,
    scheduled_for TEXT,
    error TEXT,
    metadata TEXT NOT NULL DEFAULT '{}',
    FOREIGN KEY (schedule_id) REFERENCES schedules(id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_runs_schedule ON schedule_runs(schedule_id, start_time DESC);
"""
