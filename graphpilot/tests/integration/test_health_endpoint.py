from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from graphpilot.apps.api.main import create_app
from graphpilot.services.telemetry import record_external_call, record_stage


@pytest.mark.asyncio
async def test_health_reports_status_and_availability() -> None:
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        first = await client.get("/api/health")
        await client.get("/api/missing")
        second = await client.get("/api/health")

    assert first.status_code == 200
    assert first.json()["status"] == "ok"
    # Health probes themselves are not sampled.
    assert first.json()["availability_5m"] is None
    assert second.json()["availability_5m"] == 100.0


@pytest.mark.asyncio
async def test_health_exposes_integrations_and_stage_funnel() -> None:
    record_external_call(integration="identity", latency_ms=12.0, success=True)
    record_external_call(integration="identity", latency_ms=40.0, success=False)
    record_stage("received")
    record_stage("received")
    record_stage("authenticated")

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        payload = (await client.get("/api/health")).json()

    assert payload["integrations_5m"] == {"identity": {"calls": 2, "failures": 1, "p95_ms": 40.0}}
    assert payload["stages"] == {"received": 2, "authenticated": 1}


@pytest.mark.asyncio
async def test_unknown_route_uses_error_envelope() -> None:
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/api/missing")
    assert response.status_code == 404
    assert response.json() == {"ok": False, "error": "Not Found"}
