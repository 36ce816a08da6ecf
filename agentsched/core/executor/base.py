"""Base agent executor — strategy pattern interface."""

from __future__ import annotations

import abc
from typing import Any

from pydantic import BaseModel, Field


class ExecutionResult(BaseModel):
    """Terminal signal from the executor for one run."""

    success: bool
    metadata: dict[str, Any] = Field(default_factory=dict)  # e.g. {"threadId": 42}
    error: str | None = None


class AgentExecutor(abc.ABC):
    """Runs an agent with an input. Owned and implemented outside the scheduler."""

    @abc.abstractmethod
    async def execute(self, agent_id: int, input: str) -> ExecutionResult:
        """Run the agent and return once it reaches success or failure."""
        ...

    async def aclose(self) -> None:
        """Release any held resources."""
