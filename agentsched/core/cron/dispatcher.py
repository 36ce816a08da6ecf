"""ExecutionDispatcher — runs one claimed firing against the agent executor."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from loguru import logger

from agentsched.core.clock import utc_now
from agentsched.core.cron.types import RunStatus, Schedule, ScheduleRun
from agentsched.core.errors import ExecutorFailure

if TYPE_CHECKING:
    from agentsched.core.config.schema import SchedulerConfig
    from agentsched.core.executor.base import AgentExecutor
    from agentsched.storage.store import SchedulerStore


class ExecutionDispatcher:
    """Creates the run row, calls the executor in a background task, records the outcome.

    Dispatch is fire-and-forget for the caller: ``dispatch`` returns the
    ``running`` ScheduleRun immediately. Executor errors and timeouts end the
    run as ``failed``; they never change the schedule's status or next_run.
    Each persisted transition is published to ``ws_manager`` when one is set.
    """

    def __init__(
        self,
        store: SchedulerStore,
        executor: AgentExecutor,
        config: SchedulerConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.executor = executor
        self._clock = clock
        self.timeout = config.run_timeout_s if config else 0
        self._semaphore = asyncio.Semaphore(config.max_concurrency if config else 10)
        self._tasks: dict[int, asyncio.Task] = {}
        self._notify_tasks: set[asyncio.Task] = set()
        self.ws_manager = None

    def dispatch(self, schedule: Schedule, scheduled_for: datetime | None = None) -> ScheduleRun:
        """Record a ``running`` run and start executing it. Must run inside the event loop."""
        run_id = self.store.create_run(schedule.id, self._clock(), scheduled_for)
        run = ScheduleRun(**self.store.get_run(run_id))
        self._publish(run)

        task = asyncio.create_task(self._execute(schedule, run))
        self._tasks[run.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(run.id, None))
        logger.info(f"Run dispatched: run={run.id} schedule={schedule.id} agent={schedule.agent_id}")
        return run

    async def _execute(self, schedule: Schedule, run: ScheduleRun) -> None:
        metadata: dict[str, Any] = {}
        error: str | None = None
        try:
            async with self._semaphore:
                result = await self._call_executor(schedule)
            if not result.success:
                raise ExecutorFailure(result.error or "Executor reported failure")
            metadata = result.metadata
        except asyncio.TimeoutError:
            error = f"Executor timed out after {self.timeout:g}s"
        except ExecutorFailure as e:
            error = str(e)
        except Exception as e:
            error = str(e) or type(e).__name__

        status = RunStatus.FAILED if error else RunStatus.SUCCESS
        if error:
            logger.error(f"Run {run.id} (schedule {schedule.id}) failed: {error}")

        try:
            recorded = self.store.finish_run(
                run.id, status.value, self._clock(), error=error, metadata=metadata,
            )
        except Exception:
            logger.exception(
                f"Run {run.id} (schedule {schedule.id}) outcome could not be recorded"
            )
            return
        if not recorded:
            logger.info(
                f"Run {run.id} outcome discarded: schedule {schedule.id} was deleted"
            )
            return

        logger.info(f"Run {run.id} (schedule {schedule.id}) finished: {status.value}")
        finished = self.store.get_run(run.id)
        if finished:
            self._publish(ScheduleRun(**finished))

    async def _call_executor(self, schedule: Schedule):
        call = self.executor.execute(schedule.agent_id, schedule.input)
        if self.timeout and self.timeout > 0:
            return await asyncio.wait_for(call, timeout=self.timeout)
        return await call

    # ── Notification side channel ────────────────────────────

    def _publish(self, run: ScheduleRun) -> None:
        """Push a run event without blocking the dispatcher on the notifier."""
        ws_manager = self.ws_manager
        if ws_manager is None:
            return
        event = {
            "type": "event",
            "event_type": "schedule_run",
            "schedule_id": run.schedule_id,
            "payload": run.model_dump(mode="json"),
        }
        task = asyncio.create_task(self._send(ws_manager, run.schedule_id, event))
        self._notify_tasks.add(task)
        task.add_done_callback(self._notify_tasks.discard)

    async def _send(self, ws_manager, schedule_id: int, event: dict) -> None:
        try:
            await ws_manager.publish(schedule_id, event)
        except Exception as e:
            logger.warning(f"Run event delivery failed: {e}")

    # ── Lifecycle ────────────────────────────────────────────

    def running_count(self) -> int:
        """Number of in-flight runs."""
        return len(self._tasks)

    async def shutdown(self) -> None:
        """Wait for all in-flight runs to be recorded."""
        if self._tasks:
            logger.info(f"Waiting for {len(self._tasks)} in-flight runs to finish")
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)
            self._tasks.clear()
        if self._notify_tasks:
            await asyncio.gather(*self._notify_tasks, return_exceptions=True)
