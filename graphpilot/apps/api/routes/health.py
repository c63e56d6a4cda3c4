from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from graphpilot.services.telemetry import availability, counters_snapshot, integration_health, stage_funnel

router = APIRouter(tags=["health"])

_WINDOW_S = 300


class HealthResponse(BaseModel):
    status: str
    availability_5m: float | None = None
    integrations_5m: dict[str, dict[str, float | int | None]] = {}
    stages: dict[str, int] = {}
    counters: dict[str, int] = {}


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    # Liveness plus copilot availability, upstream outcomes and the stage funnel.
    return HealthResponse(
        status="ok",
        availability_5m=availability(_WINDOW_S),
        integrations_5m=integration_health(_WINDOW_S),
        stages=stage_funnel(),
        counters=counters_snapshot(),
    )
