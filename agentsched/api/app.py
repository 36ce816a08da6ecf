"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from starlette.requests import Request
from starlette.responses import JSONResponse

from agentsched import __version__
from agentsched.api.agents import router as agents_router
from agentsched.api.routes import router as core_router
from agentsched.api.ws import ConnectionManager
from agentsched.api.ws import router as ws_router
from agentsched.core.config.loader import load_config, setup_logging
from agentsched.core.cron.dispatcher import ExecutionDispatcher
from agentsched.core.cron.service import ScheduleService
from agentsched.core.cron.trigger import TriggerLoop
from agentsched.core.errors import (
    NotFoundError,
    ScheduleStateError,
    ScheduleValidationError,
)
from agentsched.core.executor.http import HttpAgentExecutor
from agentsched.storage.store import SchedulerStore


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: Config → SchedulerStore → executor → dispatcher → TriggerLoop. Shutdown: drain runs."""
    config = load_config()
    setup_logging(config)
    store = SchedulerStore(str(config.db_path))
    service = ScheduleService(store, min_interval=config.scheduler.min_interval_minutes)

    executor = HttpAgentExecutor(config.executor)
    dispatcher = ExecutionDispatcher(store, executor, config.scheduler)
    trigger = TriggerLoop(store, dispatcher, config.scheduler)

    # WebSocket connection registry for run status push
    ws_manager = ConnectionManager()
    dispatcher.ws_manager = ws_manager

    app.state.config = config
    app.state.store = store
    app.state.service = service
    app.state.dispatcher = dispatcher
    app.state.trigger = trigger
    app.state.ws_manager = ws_manager

    if config.scheduler.enabled:
        await trigger.start()
    else:
        logger.info("TriggerLoop disabled (scheduler.enabled=false)")

    logger.info(f"agentsched API started — executor: {config.executor.base_url}")
    yield

    # Shutdown
    await trigger.stop()
    await executor.aclose()
    logger.info("agentsched API shutting down")


# ── Error mapping ────────────────────────────────────────────


async def _not_found(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


async def _invalid_state(request: Request, exc: ScheduleStateError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


async def _invalid_rule(request: Request, exc: ScheduleValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# ── App Factory ──────────────────────────────────────────────


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="agentsched API",
        description="Recurring agent execution scheduler",
        version=__version__,
        lifespan=lifespan,
    )

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(NotFoundError, _not_found)
    app.add_exception_handler(ScheduleStateError, _invalid_state)
    app.add_exception_handler(ScheduleValidationError, _invalid_rule)

    # Routers
    app.include_router(core_router)
    app.include_router(agents_router)
    app.include_router(ws_router)

    return app


app = create_app()
