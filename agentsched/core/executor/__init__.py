"""Agent executor collaborators."""

from agentsched.core.executor.base import AgentExecutor, ExecutionResult
from agentsched.core.executor.http import HttpAgentExecutor

__all__ = ["AgentExecutor", "ExecutionResult", "HttpAgentExecutor"]
