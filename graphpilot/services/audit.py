from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from graphpilot.domain.models import AiRequestLog


logger = logging.getLogger(__name__)


async def record_ai_request(
    session: AsyncSession,
    *,
    owner_id: str,
    org_id: str | None,
    request_id: str | None,
    mode: str,
    task: str,
    model: str,
    tokens_in: int,
    tokens_out: int,
    ops_count: int,
    risk_level: str,
    response_id: str | None,
) -> bool:
    # Write request metadata in a best-effort manner; content never reaches this table.
    entry = AiRequestLog(
        owner_id=owner_id,
        org_id=org_id,
        request_id=request_id,
        mode=mode,
        task=task,
        model=model,
        tokens_in=tokens_in,
        tokens_out=tokens_out,
        ops_count=ops_count,
        risk_level=risk_level,
        response_id=response_id or None,
    )
    try:
        session.add(entry)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.warning(
            "ai_request_log_write_failed request_id=%s owner_id=%s",
            request_id,
            owner_id,
            exc_info=exc,
        )
        return False
    return True
