"""Pydantic API models — JSON bodies use the camelCase keys the UI client sends."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from agentsched.core.cron.types import (
    RecurrenceRule,
    RunStatus,
    Schedule,
    ScheduleRun,
    ScheduleStatus,
    ScheduleType,
)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ════════════════════════════════════════════════════════════
# AGENTS
# ════════════════════════════════════════════════════════════


class AgentCreate(CamelModel):
    id: int | None = None
    name: str
    description: str | None = None


class AgentSummary(CamelModel):
    id: int
    name: str
    description: str | None = None


class AgentResponse(AgentSummary):
    created_at: datetime


# ════════════════════════════════════════════════════════════
# SCHEDULES
# ════════════════════════════════════════════════════════════


class ScheduleCreate(CamelModel):
    """POST /scheduler body (CreateScheduleDto)."""

    agent_id: int
    type: ScheduleType
    interval: int | None = None
    cron_expression: str | None = None
    timezone: str | None = None
    fixed_time: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("type", mode="before")
    @classmethod
    def _upper_type(cls, v: Any) -> Any:
        # older clients send "interval" / "cron" / "fixed"
        return v.upper() if isinstance(v, str) else v

    def to_rule(self) -> RecurrenceRule:
        return RecurrenceRule(
            type=self.type,
            interval=self.interval,
            cron_expression=self.cron_expression,
            timezone=self.timezone or "UTC",
            fixed_time=self.fixed_time,
        )


class RunResponse(CamelModel):
    id: int
    schedule_id: int
    status: RunStatus
    start_time: datetime
    end_time: datetime | None = None
    scheduled_for: datetime | None = None
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None

    @classmethod
    def from_run(cls, run: ScheduleRun) -> RunResponse:
        # a run row is created when it starts
        return cls(**run.model_dump(), created_at=run.start_time)


class ScheduleResponse(CamelModel):
    id: int
    agent_id: int
    type: ScheduleType
    interval: int | None = None
    cron_expression: str | None = None
    timezone: str = "UTC"
    fixed_time: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    status: ScheduleStatus
    last_run: datetime | None = None
    next_run: datetime | None = None
    created_at: datetime
    updated_at: datetime
    agent: AgentSummary | None = None
    runs: list[RunResponse] = Field(default_factory=list)

    @classmethod
    def from_schedule(
        cls,
        schedule: Schedule,
        agent: dict[str, Any] | None = None,
        runs: list[ScheduleRun] | None = None,
    ) -> ScheduleResponse:
        return cls(
            **schedule.model_dump(),
            agent=AgentSummary(**agent) if agent else None,
            runs=[RunResponse.from_run(r) for r in runs or []],
        )


# ════════════════════════════════════════════════════════════
# SERVICE
# ════════════════════════════════════════════════════════════


class HealthResponse(CamelModel):
    status: str
    version: str = ""
    scheduler_running: bool = False
    in_flight_runs: int = 0
