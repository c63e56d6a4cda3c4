from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from graphpilot.domain.models import Canvas


logger = logging.getLogger(__name__)


async def load_canvas_document(
    session: AsyncSession,
    *,
    canvas_id: str,
    owner_id: str,
    project_id: str | None = None,
) -> str | None:
    """Fetch the saved graph document for a canvas the caller owns.

    Returns ``None`` when the canvas is missing, belongs to someone else, or the
    store read fails; the caller renders that as unavailable context.
    """
    stmt = select(Canvas.document).where(Canvas.id == canvas_id, Canvas.owner_id == owner_id)
    if project_id is not None:
        stmt = stmt.where(Canvas.project_id == project_id)
    try:
        result = await session.execute(stmt)
    except SQLAlchemyError as exc:
        logger.warning(
            "canvas_load_failed canvas_id=%s owner_id=%s",
            canvas_id,
            owner_id,
            exc_info=exc,
        )
        await session.rollback()
        return None
    return result.scalar_one_or_none()
