from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from graphpilot.apps.api.deps import get_copilot_service, get_db
from graphpilot.apps.api.response import get_request_id
from graphpilot.core.errors import ValidationError
from graphpilot.services.copilot import CopilotService, parse_copilot_request
from graphpilot.services.identity import parse_bearer_token


router = APIRouter(tags=["ai"])


@router.post("/ai")
async def ai_copilot(
    request: Request,
    db: AsyncSession = Depends(get_db),
    service: CopilotService = Depends(get_copilot_service),
) -> dict[str, Any]:
    request_id = get_request_id(request)
    # Check order is fixed: configuration, body JSON, body fields, then bearer token.
    service.ensure_configured()
    try:
        payload = await request.json()
    except ValueError as exc:
        raise ValidationError("Invalid JSON body") from exc
    body = parse_copilot_request(payload)
    token = parse_bearer_token(request.headers.get("Authorization"))
    return await service.handle(db, body, bearer_token=token, request_id=request_id)
