"""ScheduleService — Control API operations and the status state machine.

    active ⇄ paused          user-initiated, any number of times
    active → completed       automatic, when a FIXED schedule has fired
    (delete)                 terminal, cascades to runs

Run failures never change a schedule's status.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from loguru import logger

from agentsched.core.clock import utc_now
from agentsched.core.cron.recurrence import next_occurrence, validate_rule
from agentsched.core.cron.types import (
    RecurrenceRule,
    Schedule,
    ScheduleRun,
    ScheduleStatus,
)
from agentsched.core.errors import (
    AgentNotFound,
    ScheduleNotFound,
    ScheduleStateError,
    ScheduleValidationError,
)

if TYPE_CHECKING:
    from agentsched.storage.store import SchedulerStore


class ScheduleService:
    """Create / pause / resume / delete / list schedules over the store."""

    def __init__(
        self,
        store: SchedulerStore,
        min_interval: int = 1,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.min_interval = min_interval
        self._clock = clock

    def create(
        self,
        agent_id: int,
        rule: RecurrenceRule,
        metadata: dict[str, Any] | None = None,
    ) -> Schedule:
        """Validate the rule, check the agent, compute the first next_run."""
        now = self._clock()
        rule = validate_rule(rule, now, self.min_interval)
        if not self.store.agent_exists(agent_id):
            raise AgentNotFound(agent_id)

        next_run = next_occurrence(rule, now)
        if next_run is None:
            raise ScheduleValidationError("Rule has no future occurrence")

        schedule_id = self.store.add_schedule(
            agent_id,
            rule.type.value,
            next_run,
            interval=rule.interval,
            cron_expression=rule.cron_expression,
            timezone=rule.timezone,
            fixed_time=rule.fixed_time,
            metadata=metadata,
            now=now,
        )
        logger.info(
            f"Schedule created: {schedule_id} ({rule.type.value}) "
            f"agent={agent_id} next_run={next_run.isoformat()}"
        )
        return self.get(schedule_id)

    def get(self, schedule_id: int) -> Schedule:
        row = self.store.get_schedule(schedule_id)
        if not row:
            raise ScheduleNotFound(schedule_id)
        return Schedule(**row)

    def list_schedules(self, status: ScheduleStatus | None = None) -> list[Schedule]:
        rows = self.store.list_schedules(status.value if status else None)
        return [Schedule(**r) for r in rows]

    def pause(self, schedule_id: int) -> Schedule:
        """active → paused. next_run is kept as-is; an in-flight run continues."""
        schedule = self.get(schedule_id)
        if schedule.status == ScheduleStatus.PAUSED:
            return schedule
        changed = self.store.set_status(
            schedule_id,
            ScheduleStatus.PAUSED.value,
            from_statuses=(ScheduleStatus.ACTIVE.value,),
            now=self._clock(),
        )
        if not changed:
            raise ScheduleStateError(
                f"Cannot pause schedule {schedule_id} in status '{self.get(schedule_id).status.value}'"
            )
        logger.info(f"Schedule paused: {schedule_id}")
        return self.get(schedule_id)

    def resume(self, schedule_id: int) -> Schedule:
        """paused → active with next_run recomputed from now.

        A FIXED schedule whose instant passed while paused becomes completed.
        """
        schedule = self.get(schedule_id)
        if schedule.status == ScheduleStatus.ACTIVE:
            return schedule
        if schedule.status != ScheduleStatus.PAUSED:
            raise ScheduleStateError(
                f"Cannot resume schedule {schedule_id} in status '{schedule.status.value}'"
            )

        now = self._clock()
        next_run = next_occurrence(schedule.rule, now)
        if not self.store.resume_schedule(schedule_id, next_run, now=now):
            raise ScheduleStateError(f"Schedule {schedule_id} changed status concurrently")
        if next_run is None:
            logger.info(f"Schedule resumed as completed (no future occurrence): {schedule_id}")
        else:
            logger.info(f"Schedule resumed: {schedule_id} next_run={next_run.isoformat()}")
        return self.get(schedule_id)

    def delete(self, schedule_id: int) -> None:
        """Delete a schedule and all of its runs.

        An in-flight run is not cancelled; its outcome is discarded when it
        finishes because its run row is gone.
        """
        if not self.store.delete_schedule(schedule_id):
            raise ScheduleNotFound(schedule_id)
        logger.info(f"Schedule deleted: {schedule_id}")

    def list_runs(self, schedule_id: int, limit: int | None = None) -> list[ScheduleRun]:
        if not self.store.get_schedule(schedule_id):
            raise ScheduleNotFound(schedule_id)
        return [ScheduleRun(**r) for r in self.store.list_runs(schedule_id, limit=limit)]
