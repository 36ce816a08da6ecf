"""Scheduler error taxonomy."""

from __future__ import annotations


class SchedulerError(Exception):
    """Base class for all scheduler errors."""


class ScheduleValidationError(SchedulerError):
    """Recurrence rule or request is malformed. Never persisted."""


class ScheduleStateError(ScheduleValidationError):
    """Status transition not allowed from the schedule's current status."""


class NotFoundError(SchedulerError):
    """Referenced entity does not exist."""

    entity = "Entity"

    def __init__(self, entity_id: int | str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity} {entity_id} not found")


class ScheduleNotFound(NotFoundError):
    entity = "Schedule"


class AgentNotFound(NotFoundError):
    entity = "Agent"


class ExecutorFailure(SchedulerError):
    """Agent executor reported failure or timed out.

    Recorded on the ScheduleRun, never surfaced through the Control API.
    """


class DispatchRaceLost(SchedulerError):
    """Another trigger pass already claimed this firing."""

    def __init__(self, schedule_id: int):
        self.schedule_id = schedule_id
        super().__init__(f"Firing of schedule {schedule_id} already claimed")
