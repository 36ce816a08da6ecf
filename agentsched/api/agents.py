"""Agent registry routes — mirror of the platform's agents for existence checks."""

from __future__ import annotations

import sqlite3

from fastapi import APIRouter, Depends, HTTPException, status

from agentsched.api.deps import get_store
from agentsched.core.errors import AgentNotFound
from agentsched.storage.models import AgentCreate, AgentResponse
from agentsched.storage.store import SchedulerStore

router = APIRouter(prefix="/agents", tags=["agents"])


@router.post("", response_model=AgentResponse, status_code=status.HTTP_201_CREATED)
async def register_agent(body: AgentCreate, store: SchedulerStore = Depends(get_store)):
    """Register an agent (explicit id keeps the platform's id)."""
    try:
        agent_id = store.add_agent(body.name, body.description, agent_id=body.id)
    except sqlite3.IntegrityError:
        raise HTTPException(status_code=409, detail=f"Agent {body.id} already exists")
    return AgentResponse(**store.get_agent(agent_id))


@router.get("", response_model=list[AgentResponse])
async def list_agents(store: SchedulerStore = Depends(get_store)):
    """List registered agents."""
    return [AgentResponse(**a) for a in store.list_agents()]


@router.get("/{agent_id}", response_model=AgentResponse)
async def get_agent(agent_id: int, store: SchedulerStore = Depends(get_store)):
    """Get one agent."""
    agent = store.get_agent(agent_id)
    if not agent:
        raise AgentNotFound(agent_id)
    return AgentResponse(**agent)
