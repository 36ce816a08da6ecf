"""Core API routes — health + schedule control."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, status

from agentsched import __version__
from agentsched.api.deps import get_config, get_service, get_store
from agentsched.core.config.schema import Config
from agentsched.core.cron.service import ScheduleService
from agentsched.core.cron.types import Schedule, ScheduleRun, ScheduleStatus
from agentsched.storage.models import (
    HealthResponse,
    RunResponse,
    ScheduleCreate,
    ScheduleResponse,
)
from agentsched.storage.store import SchedulerStore

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    """Health check."""
    trigger = getattr(request.app.state, "trigger", None)
    dispatcher = getattr(request.app.state, "dispatcher", None)
    return HealthResponse(
        status="ok",
        version=__version__,
        scheduler_running=bool(trigger and trigger.running),
        in_flight_runs=dispatcher.running_count() if dispatcher else 0,
    )


# ════════════════════════════════════════════════════════════
# /scheduler
# ════════════════════════════════════════════════════════════


def _with_relations(
    schedule: Schedule, store: SchedulerStore, config: Config
) -> ScheduleResponse:
    """Assemble the nested agent + recent runs DTO from plain ids."""
    runs = store.list_runs(schedule.id, limit=config.scheduler.run_summary_limit)
    return ScheduleResponse.from_schedule(
        schedule,
        agent=store.get_agent(schedule.agent_id),
        runs=[ScheduleRun(**r) for r in runs],
    )


@router.post(
    "/scheduler", response_model=ScheduleResponse, status_code=status.HTTP_201_CREATED
)
async def create_schedule(
    body: ScheduleCreate,
    service: ScheduleService = Depends(get_service),
    store: SchedulerStore = Depends(get_store),
    config: Config = Depends(get_config),
):
    """Create a schedule. The first nextRun is computed from now."""
    schedule = service.create(body.agent_id, body.to_rule(), metadata=body.metadata)
    return _with_relations(schedule, store, config)


@router.get("/scheduler", response_model=list[ScheduleResponse])
async def list_schedules(
    status_filter: ScheduleStatus | None = Query(default=None, alias="status"),
    service: ScheduleService = Depends(get_service),
    store: SchedulerStore = Depends(get_store),
    config: Config = Depends(get_config),
):
    """List schedules with nested agent and recent run summaries."""
    return [
        _with_relations(s, store, config) for s in service.list_schedules(status_filter)
    ]


@router.get("/scheduler/{schedule_id}", response_model=ScheduleResponse)
async def get_schedule(
    schedule_id: int,
    service: ScheduleService = Depends(get_service),
    store: SchedulerStore = Depends(get_store),
    config: Config = Depends(get_config),
):
    """Get one schedule."""
    return _with_relations(service.get(schedule_id), store, config)


@router.post("/scheduler/{schedule_id}/pause", response_model=ScheduleResponse)
async def pause_schedule(
    schedule_id: int,
    service: ScheduleService = Depends(get_service),
    store: SchedulerStore = Depends(get_store),
    config: Config = Depends(get_config),
):
    """Pause: no further claims until resumed. In-flight runs continue."""
    return _with_relations(service.pause(schedule_id), store, config)


@router.post("/scheduler/{schedule_id}/resume", response_model=ScheduleResponse)
async def resume_schedule(
    schedule_id: int,
    service: ScheduleService = Depends(get_service),
    store: SchedulerStore = Depends(get_store),
    config: Config = Depends(get_config),
):
    """Resume: nextRun is recomputed from now."""
    return _with_relations(service.resume(schedule_id), store, config)


@router.delete("/scheduler/{schedule_id}")
async def delete_schedule(
    schedule_id: int,
    service: ScheduleService = Depends(get_service),
):
    """Delete a schedule and all of its runs."""
    service.delete(schedule_id)
    return {"status": "deleted", "id": schedule_id}


@router.get("/scheduler/{schedule_id}/runs", response_model=list[RunResponse])
@router.get("/scheduler/{schedule_id}/logs", response_model=list[RunResponse])
async def list_runs(
    schedule_id: int,
    limit: int | None = Query(default=None, ge=1, le=1000),
    service: ScheduleService = Depends(get_service),
):
    """Run history of a schedule, newest first."""
    return [RunResponse.from_run(r) for r in service.list_runs(schedule_id, limit=limit)]
