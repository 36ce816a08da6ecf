"""Tests for agentsched.core.executor.http (httpx MockTransport)."""

import json

import httpx
import pytest

from agentsched.core.config.schema import ExecutorConfig
from agentsched.core.errors import ExecutorFailure
from agentsched.core.executor.http import HttpAgentExecutor


def _executor(handler, **cfg):
    config = ExecutorConfig(base_url="http://agents.test", **cfg)
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url=config.base_url
    )
    return HttpAgentExecutor(config, client=client)


async def test_execute_success():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        seen["key"] = request.headers.get("X-API-Key")
        return httpx.Response(200, json={"success": True, "metadata": {"output": "report ready"}})

    ex = _executor(handler, api_key="k-123")
    result = await ex.execute(7, "build the weekly report")
    await ex.aclose()

    assert result.success is True
    assert result.metadata == {"output": "report ready"}
    assert seen["path"] == "/agents/7/execute"
    assert seen["body"] == {"agentId": 7, "input": "build the weekly report"}
    assert seen["key"] == "k-123"


async def test_no_api_key_header_when_unset():
    def handler(request):
        assert "X-API-Key" not in request.headers
        return httpx.Response(200, json={})

    ex = _executor(handler)
    result = await ex.execute(1, "")
    assert result.success is True
    assert result.metadata == {}


async def test_reported_failure():
    def handler(request):
        return httpx.Response(200, json={"success": False, "error": "tool call failed"})

    result = await _executor(handler).execute(1, "x")
    assert result.success is False
    assert result.error == "tool call failed"


async def test_http_error_status():
    def handler(request):
        return httpx.Response(503, json={"detail": "agent runtime overloaded"})

    with pytest.raises(ExecutorFailure, match="HTTP 503: agent runtime overloaded"):
        await _executor(handler).execute(1, "x")


async def test_http_error_plain_text():
    def handler(request):
        return httpx.Response(500, text="Internal Server Error")

    with pytest.raises(ExecutorFailure, match="HTTP 500: Internal Server Error"):
        await _executor(handler).execute(1, "x")


async def test_unreachable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ExecutorFailure, match="unreachable"):
        await _executor(handler).execute(1, "x")


async def test_non_json_body():
    def handler(request):
        return httpx.Response(200, text="ok")

    with pytest.raises(ExecutorFailure, match="non-JSON"):
        await _executor(handler).execute(1, "x")


async def test_unexpected_shape():
    def handler(request):
        return httpx.Response(200, json=["not", "an", "object"])

    with pytest.raises(ExecutorFailure, match="unexpected"):
        await _executor(handler).execute(1, "x")


async def test_custom_execute_path():
    def handler(request):
        assert request.url.path == "/v2/run/3"
        return httpx.Response(200, json={"success": True})

    ex = _executor(handler, execute_path="/v2/run/{agent_id}")
    assert (await ex.execute(3, "x")).success is True
