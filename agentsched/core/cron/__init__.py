"""Scheduling core — recurrence, control service, trigger loop, dispatcher."""

from agentsched.core.cron.dispatcher import ExecutionDispatcher
from agentsched.core.cron.service import ScheduleService
from agentsched.core.cron.trigger import TriggerLoop
from agentsched.core.cron.types import (
    RecurrenceRule,
    RunStatus,
    Schedule,
    ScheduleRun,
    ScheduleStatus,
    ScheduleType,
)

__all__ = [
    "ExecutionDispatcher",
    "RecurrenceRule",
    "RunStatus",
    "Schedule",
    "ScheduleRun",
    "ScheduleService",
    "ScheduleStatus",
    "ScheduleType",
    "TriggerLoop",
]
