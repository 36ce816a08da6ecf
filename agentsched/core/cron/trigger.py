"""TriggerLoop — periodic scan for due schedules, at-most-once dispatch per firing.

APScheduler drives the tick; the SQLite store is the source of truth. Each
tick claims due firings with a compare-and-swap on next_run, so a slow tick,
a restarted process or a second replica never dispatches a firing twice.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from agentsched.core.clock import utc_now
from agentsched.core.cron.recurrence import catch_up
from agentsched.core.cron.types import Schedule
from agentsched.core.errors import DispatchRaceLost

if TYPE_CHECKING:
    from agentsched.core.config.schema import SchedulerConfig
    from agentsched.core.cron.dispatcher import ExecutionDispatcher
    from agentsched.storage.store import SchedulerStore

_TICK_JOB_ID = "agentsched-trigger-loop"


class TriggerLoop:
    """Single coordinating loop: scan → claim → dispatch → advance next_run."""

    def __init__(
        self,
        store: SchedulerStore,
        dispatcher: ExecutionDispatcher,
        config: SchedulerConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.config = config
        self._clock = clock
        self.tick_seconds = config.tick_seconds if config else 30.0
        self._scheduler: AsyncIOScheduler | None = None

    async def start(self) -> None:
        """Recover interrupted runs, then tick now and every ``tick_seconds``."""
        if self.config and self.config.recover_interrupted_runs:
            self.store.fail_interrupted_runs(self._clock(), "Interrupted by scheduler restart")

        if self.config and self.tick_seconds * 2 > self.config.min_interval_minutes * 60:
            logger.warning(
                f"Tick of {self.tick_seconds:g}s is coarse for a "
                f"{self.config.min_interval_minutes} min minimum interval; firings may run late"
            )

        # must be created inside the running event loop
        self._scheduler = AsyncIOScheduler(
            job_defaults={"coalesce": True, "max_instances": 1}
        )
        self._scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=self.tick_seconds),
            id=_TICK_JOB_ID,
            next_run_time=datetime.now(timezone.utc),
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info(f"TriggerLoop started (tick={self.tick_seconds:g}s)")

    async def stop(self) -> None:
        """Stop ticking and wait for in-flight runs to be recorded."""
        if self._scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        await self.dispatcher.shutdown()
        logger.info("TriggerLoop stopped")

    async def tick(self, now: datetime | None = None) -> int:
        """Run one scan. Returns the number of firings dispatched."""
        now = now or self._clock()
        due = self.store.get_due_schedules(now)
        if not due:
            logger.debug("Tick: nothing due")
            return 0

        dispatched = 0
        for row in due:
            try:
                if self._fire(Schedule(**row), now):
                    dispatched += 1
            except Exception as e:
                logger.error(f"Tick: schedule {row.get('id')} could not be dispatched: {e}")
        logger.info(f"Tick: {dispatched}/{len(due)} due schedule(s) dispatched")
        return dispatched

    def _fire(self, schedule: Schedule, now: datetime) -> bool:
        """Claim one firing and hand it to the dispatcher.

        next_run is advanced from the firing instant, not from completion,
        so the cadence does not drift with executor latency.
        """
        fired_at = schedule.next_run
        new_next_run = catch_up(schedule.rule, fired_at, now)
        try:
            self.store.claim_firing(schedule.id, fired_at, new_next_run, now=now)
        except DispatchRaceLost:
            logger.debug(f"Schedule {schedule.id}: firing {fired_at.isoformat()} already claimed")
            return False

        if new_next_run is None:
            logger.info(f"Schedule {schedule.id} completed after its final firing")
        self.dispatcher.dispatch(schedule, scheduled_for=fired_at)
        return True

    @property
    def running(self) -> bool:
        return bool(self._scheduler and self._scheduler.running)
