"""FastAPI dependency injection — pull singletons from app.state."""

from __future__ import annotations

from fastapi import Request

from agentsched.core.config.schema import Config
from agentsched.core.cron.service import ScheduleService
from agentsched.storage.store import SchedulerStore


def get_config(request: Request) -> Config:
    """Get Config singleton from app state."""
    return request.app.state.config


def get_store(request: Request) -> SchedulerStore:
    """Get SchedulerStore singleton from app state."""
    return request.app.state.store


def get_service(request: Request) -> ScheduleService:
    """Get ScheduleService singleton from app state."""
    return request.app.state.service
