"""Scheduler types — mirror the SQLite schedules / schedule_runs tables."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ScheduleType(str, Enum):
    INTERVAL = "INTERVAL"
    CRON = "CRON"
    FIXED = "FIXED"


class ScheduleStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


class RunStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class RecurrenceRule(BaseModel):
    """Declarative recurrence: which fields matter depends on ``type``."""

    type: ScheduleType
    interval: int | None = None  # minutes, INTERVAL only
    cron_expression: str | None = None  # five fields, CRON only
    timezone: str = "UTC"
    fixed_time: datetime | None = None  # FIXED only, fires once


class Schedule(BaseModel):
    """Schedule row — recurrence rule bound to one agent."""

    id: int
    agent_id: int
    type: ScheduleType
    interval: int | None = None
    cron_expression: str | None = None
    timezone: str = "UTC"
    fixed_time: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    status: ScheduleStatus = ScheduleStatus.ACTIVE
    last_run: datetime | None = None
    next_run: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def rule(self) -> RecurrenceRule:
        return RecurrenceRule(
            type=self.type,
            interval=self.interval,
            cron_expression=self.cron_expression,
            timezone=self.timezone,
            fixed_time=self.fixed_time,
        )

    @property
    def input(self) -> str:
        """Payload handed to the executor verbatim on each run."""
        value = self.metadata.get("input", "")
        return value if isinstance(value, str) else str(value)


class ScheduleRun(BaseModel):
    """One firing of a schedule. Terminal status is written exactly once."""

    id: int
    schedule_id: int
    status: RunStatus = RunStatus.RUNNING
    start_time: datetime
    end_time: datetime | None = None
    scheduled_for: datetime | None = None
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)