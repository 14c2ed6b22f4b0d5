from __future__ import annotations

import asyncio

import httpx
import pytest


@pytest.mark.asyncio
async def test_lifespan_starts_and_stops_controller() -> None:
    from tool_controller import main

    transport = httpx.ASGITransport(app=main.app)
    async with main.app.router.lifespan_context(main.app):
        controller = main.app.state.controller
        assert controller is not None
        assert controller.queue.running
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            response = await client.get("/health")
            assert response.status_code == 200
            assert response.json() == {"status": "ok"}

            metrics_response = await client.get("/metrics")
            assert metrics_response.status_code == 200
            assert "tool_controller_reconcile_total" in metrics_response.text

    assert main.app.state.controller is None
    assert not controller.queue.running
    await transport.aclose()


@pytest.mark.asyncio
async def test_toolcall_routes_create_and_report_progress() -> None:
    from tool_controller.main import create_app
    from tests.helpers.stubs import build_controller, make_builtin_tool

    controller, _, _ = build_controller()
    await controller.store.create(make_builtin_tool("add"))
    app = create_app(controller.settings, controller=controller)

    transport = httpx.ASGITransport(app=app)
    async with app.router.lifespan_context(app):
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            created = await client.post(
                "/api/v1/toolcalls",
                json={"name": "call-1", "toolRef": "add", "arguments": {"a": 2, "b": 3}},
            )
            assert created.status_code == 201
            assert created.json()["metadata"]["namespace"] == "default"

            duplicate = await client.post("/api/v1/toolcalls", json={"name": "call-1", "toolRef": "add"})
            assert duplicate.status_code == 409

            invalid = await client.post("/api/v1/toolcalls", json={"name": "call-2"})
            assert invalid.status_code == 422

            body = {}
            for _ in range(100):
                fetched = await client.get("/api/v1/toolcalls/default/call-1")
                body = fetched.json()
                if body["status"]["phase"] == "Succeeded":
                    break
                await asyncio.sleep(0.01)
            assert body["status"]["result"] == "5"
            assert body["status"]["statusText"] == "Ready"

            events = await client.get("/api/v1/toolcalls/default/call-1/events")
            assert events.status_code == 200
            assert [item["reason"] for item in events.json()["items"]] == ["ExecutionSucceeded"]

            missing = await client.get("/api/v1/toolcalls/default/ghost")
            assert missing.status_code == 404
    await transport.aclose()


@pytest.mark.asyncio
async def test_routes_unavailable_outside_lifespan() -> None:
    from tool_controller.main import create_app
    from tests.helpers.stubs import make_settings

    app = create_app(make_settings())
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.get("/api/v1/toolcalls/default/call-1")
        assert response.status_code == 503
    await transport.aclose()


@pytest.mark.asyncio
async def test_disabled_approvals_hide_the_callback() -> None:
    from tool_controller.main import create_app
    from tests.helpers.stubs import build_controller, make_settings

    controller, _, _ = build_controller(make_settings(approvals={"enabled": False}))
    app = create_app(controller.settings, controller=controller)
    transport = httpx.ASGITransport(app=app)
    async with app.router.lifespan_context(app):
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            response = await client.post(
                "/api/v1/approvals/callback", json={"runID": "call-1", "status": {"approved": True}}
            )
            assert response.status_code == 404
    await transport.aclose()


@pytest.mark.asyncio
async def test_diagnostics_report_queue_builtins_and_capability_clients() -> None:
    from tool_controller.main import create_app
    from tests.helpers.stubs import build_controller

    controller, _, _ = build_controller()
    app = create_app(controller.settings, controller=controller)
    transport = httpx.ASGITransport(app=app)
    async with app.router.lifespan_context(app):
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            response = await client.get("/api/v1/diagnostics/capabilities")
    await transport.aclose()

    assert response.status_code == 200
    body = response.json()
    assert body["queue"]["running"] is True
    assert body["builtins"] == ["add", "divide", "multiply", "subtract"]
    assert body["capabilities"] == {}
