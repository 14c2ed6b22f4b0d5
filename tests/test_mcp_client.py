import asyncio
import json
from collections import deque
from dataclasses import replace

import httpx
import pytest

from tool_controller.core import metrics
from tool_controller.orchestration.store import InMemoryResourceStore
from tool_controller.services.mcp_client import (
    CapabilityClientConfig,
    CapabilityResponseError,
    CapabilityServerClient,
    CircuitOpenError,
    decode_invoke_response,
    is_retryable_status,
)
from tool_controller.tools.exceptions import BindingNotFoundError, RemoteCallError, RemoteCallTimeoutError
from tests.helpers.stubs import build_capability_manager, make_server


@pytest.fixture
def noop_sleep(monkeypatch):
    calls = deque()

    async def _sleep(duration: float):
        calls.append(duration)

    monkeypatch.setattr(asyncio, "sleep", _sleep)
    return calls


@pytest.fixture
def quiet_metrics(monkeypatch):
    observed = []
    monkeypatch.setattr(metrics, "observe_capability_request", lambda **kwargs: observed.append(kwargs))
    monkeypatch.setattr(metrics, "increment_capability_retry", lambda **_: None)
    monkeypatch.setattr(metrics, "increment_capability_circuit_open", lambda **_: None)
    monkeypatch.setattr(metrics, "increment_capability_circuit_trip", lambda **_: None)
    return observed


def _make_config(**overrides):
    config = CapabilityClientConfig(
        base_url="http://localhost",
        timeout_seconds=0.5,
        max_retries=2,
        retry_backoff_seconds=0.01,
        retry_jitter_seconds=0.0,
        verify_ssl=False,
        default_headers={"X-Test": "true"},
        circuit_breaker_threshold=3,
        circuit_breaker_reset_seconds=0.5,
    )
    return replace(config, **overrides)


@pytest.mark.asyncio
async def test_invoke_tool_posts_arguments_and_passes_strings_through(quiet_metrics):
    seen = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"result": "42 issues"})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="http://localhost") as async_client:
        client = CapabilityServerClient(_make_config(), client=async_client)
        result = await client.invoke_tool("list_issues", {"repo": "x"}, trace_id="trace-123")

    assert result == "42 issues"
    [request] = seen
    assert request.method == "POST"
    assert request.url.path == "/tools/list_issues/invoke"
    assert json.loads(request.content) == {"arguments": {"repo": "x"}}
    assert request.headers["X-Test"] == "true"
    assert request.headers["X-Trace-Id"] == "trace-123"
    assert quiet_metrics[-1]["endpoint"] == "/tools/list_issues/invoke"
    assert quiet_metrics[-1]["success"] is True


@pytest.mark.asyncio
async def test_invoke_tool_encodes_structured_results(quiet_metrics):
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"result": {"count": 2}})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="http://localhost") as async_client:
        client = CapabilityServerClient(_make_config(), client=async_client)
        assert await client.invoke_tool("count", {}) == '{"count": 2}'


@pytest.mark.asyncio
async def test_invoke_tool_reports_server_errors(quiet_metrics):
    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.startswith("/tools/bad"):
            return httpx.Response(400, json={"detail": "bad arguments"})
        return httpx.Response(200, json={"error": "tool crashed"})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="http://localhost") as async_client:
        client = CapabilityServerClient(_make_config(), client=async_client)
        with pytest.raises(CapabilityResponseError) as rejected:
            await client.invoke_tool("bad", {})
        assert rejected.value.status_code == 400
        with pytest.raises(CapabilityResponseError, match="tool crashed"):
            await client.invoke_tool("crashy", {})


@pytest.mark.asyncio
async def test_client_retries_on_transient_failure(monkeypatch, noop_sleep):
    observed = []
    trips = []

    def fake_observe(*, method: str, endpoint: str, status: int | None, success: bool, latency: float) -> None:
        observed.append((method, endpoint, status, success))

    monkeypatch.setattr(metrics, "observe_capability_request", fake_observe)
    monkeypatch.setattr(metrics, "increment_capability_retry", lambda **_: None)
    monkeypatch.setattr(metrics, "increment_capability_circuit_open", lambda **_: None)
    monkeypatch.setattr(metrics, "increment_capability_circuit_trip", lambda **_: trips.append(True))

    call_count = 0

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        if call_count == 1:
            return httpx.Response(503, json={"detail": "temporary"})
        return httpx.Response(200, json={"result": "ok"})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="http://localhost") as async_client:
        client = CapabilityServerClient(_make_config(), client=async_client)
        assert await client.invoke_tool("flaky", {}) == "ok"
        assert call_count == 2

    assert observed[0] == ("POST", "/tools/flaky/invoke", 503, False)
    assert observed[-1] == ("POST", "/tools/flaky/invoke", 200, True)
    assert noop_sleep
    assert not trips


@pytest.mark.asyncio
async def test_circuit_breaker_blocks_requests(monkeypatch):
    opens = []
    trips = []

    monkeypatch.setattr(metrics, "observe_capability_request", lambda **kwargs: None)
    monkeypatch.setattr(metrics, "increment_capability_retry", lambda **_: None)
    monkeypatch.setattr(metrics, "increment_capability_circuit_open", lambda **kwargs: opens.append(True))
    monkeypatch.setattr(metrics, "increment_capability_circuit_trip", lambda **kwargs: trips.append(True))

    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("boom", request=request)

    transport = httpx.MockTransport(handler)
    config = _make_config(max_retries=0, circuit_breaker_threshold=2, circuit_breaker_reset_seconds=10.0)
    async with httpx.AsyncClient(transport=transport, base_url="http://localhost") as async_client:
        client = CapabilityServerClient(config, client=async_client)
        with pytest.raises(httpx.ConnectError):
            await client.request("POST", "/unstable")
        with pytest.raises(httpx.ConnectError):
            await client.request("POST", "/unstable")
        assert trips

        with pytest.raises(CircuitOpenError):
            await client.request("POST", "/unstable")
        assert opens
        assert client.diagnostics()["circuit"]["is_open"] is True


@pytest.mark.asyncio
async def test_manager_routes_by_binding_url(quiet_metrics):
    store = InMemoryResourceStore()
    await store.create(make_server("github", url="http://github.capability"))
    hosts = []

    async def handler(request: httpx.Request) -> httpx.Response:
        hosts.append(request.url.host)
        return httpx.Response(200, json={"result": "done"})

    manager = build_capability_manager(store, handler)
    try:
        assert await manager.call("github", "create_issue", {"title": "x"}, namespace="default") == "done"
        circuit = manager.diagnostics()["default/github"]["circuit"]
        assert circuit["is_open"] is False
    finally:
        await manager.aclose()
    assert hosts == ["github.capability"]


@pytest.mark.asyncio
async def test_manager_classifies_failures(quiet_metrics):
    store = InMemoryResourceStore()
    await store.create(make_server("srv"))

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.startswith("/tools/slow"):
            raise httpx.ReadTimeout("stalled", request=request)
        if request.url.path.startswith("/tools/gateway"):
            return httpx.Response(504, json={"detail": "upstream timed out"})
        return httpx.Response(422, json={"detail": "nope"})

    manager = build_capability_manager(store, handler)
    try:
        with pytest.raises(RemoteCallTimeoutError):
            await manager.call("srv", "slow", {}, namespace="default")
        with pytest.raises(RemoteCallTimeoutError, match="504"):
            await manager.call("srv", "gateway", {}, namespace="default")
        with pytest.raises(RemoteCallError):
            await manager.call("srv", "rejecting", {}, namespace="default")
        with pytest.raises(BindingNotFoundError):
            await manager.call("missing", "tool", {}, namespace="default")
    finally:
        await manager.aclose()


@pytest.mark.parametrize(
    ("status", "retryable"),
    [(200, False), (404, False), (408, True), (429, True), (500, True), (503, True)],
)
def test_retryable_statuses(status, retryable):
    assert is_retryable_status(status) is retryable


def test_decode_rejects_non_object_payloads():
    with pytest.raises(CapabilityResponseError, match="JSON object"):
        decode_invoke_response(httpx.Response(200, json=["not", "an", "object"]))
    assert decode_invoke_response(httpx.Response(200, json={"result": None})) == "null"
