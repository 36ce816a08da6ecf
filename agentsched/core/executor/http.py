"""HttpAgentExecutor — async httpx client for the agent platform API."""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from agentsched.core.config.schema import ExecutorConfig
from agentsched.core.errors import ExecutorFailure
from agentsched.core.executor.base import AgentExecutor, ExecutionResult


class HttpAgentExecutor(AgentExecutor):
    """POSTs ``{"agentId", "input"}`` to the platform and reads the outcome.

    Expected response body: ``{"success": bool, "metadata": {...}, "error": str}``.
    Transport errors and non-2xx responses raise ExecutorFailure.
    """

    def __init__(self, config: ExecutorConfig, client: httpx.AsyncClient | None = None):
        self.config = config
        self._http = client or httpx.AsyncClient(
            base_url=config.base_url.rstrip("/"), timeout=config.timeout
        )

    def _build_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.config.api_key:
            headers["X-API-Key"] = self.config.api_key
        return headers

    async def execute(self, agent_id: int, input: str) -> ExecutionResult:
        path = self.config.execute_path.format(agent_id=agent_id)
        payload = {"agentId": agent_id, "input": input}
        logger.debug(f"Executor request: POST {path} agent={agent_id}")
        try:
            resp = await self._http.post(path, json=payload, headers=self._build_headers())
        except httpx.HTTPError as e:
            raise ExecutorFailure(f"Executor unreachable: {e}") from e

        if resp.status_code >= 400:
            raise ExecutorFailure(f"HTTP {resp.status_code}: {_detail(resp)}")

        try:
            body = resp.json()
        except ValueError as e:
            raise ExecutorFailure("Executor returned a non-JSON response") from e
        if not isinstance(body, dict):
            raise ExecutorFailure("Executor returned an unexpected response shape")

        return ExecutionResult(
            success=bool(body.get("success", True)),
            metadata=body.get("metadata") or {},
            error=body.get("error"),
        )

    async def aclose(self) -> None:
        await self._http.aclose()


def _detail(resp: httpx.Response) -> Any:
    try:
        data = resp.json()
    except ValueError:
        return resp.text
    if isinstance(data, dict):
        return data.get("detail") or data.get("error") or data
    return data
