from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
import logging
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from graphpilot.core.errors import QuotaExceededError
from graphpilot.domain.models import AiUsageMonthly


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuotaCheck:
    # Usage observed before the model call; the limit applies to tokens_in + tokens_out.
    current_tokens: int
    token_limit: int


def tokens_remaining(token_limit: int, current_tokens: int, tokens_in: int, tokens_out: int) -> int:
    return max(0, token_limit - current_tokens - tokens_in - tokens_out)


class QuotaLedger:
    """Monthly token accounting per owner.

    Usage is checked before the model is called and committed only after a
    validated response, so failed requests never consume quota. The check and
    the commit are not serialized: two concurrent requests can both pass the
    check and overshoot the limit by at most one request's worth of tokens.
    """

    def __init__(self, *, time_provider: Callable[[], datetime] | None = None) -> None:
        # Allow time injection for deterministic rollover tests.
        self._time_provider = time_provider or _utc_now

    def now(self) -> datetime:
        return self._time_provider()

    def current_period_start(self) -> date:
        return _month_start(self._time_provider())

    async def current_usage(self, session: AsyncSession, *, owner_id: str, period_start: date) -> int:
        result = await session.execute(
            select(AiUsageMonthly.tokens_in, AiUsageMonthly.tokens_out).where(
                AiUsageMonthly.owner_id == owner_id,
                AiUsageMonthly.period_start == period_start,
            )
        )
        row = result.one_or_none()
        if row is None:
            return 0
        return int(row.tokens_in or 0) + int(row.tokens_out or 0)

    async def check_and_reserve(
        self,
        session: AsyncSession,
        *,
        owner_id: str,
        period_start: date,
        token_limit: int,
    ) -> QuotaCheck:
        current = await self.current_usage(session, owner_id=owner_id, period_start=period_start)
        if current >= token_limit:
            logger.info(
                "quota_exceeded owner_id=%s period_start=%s used=%s limit=%s",
                owner_id,
                period_start.isoformat(),
                current,
                token_limit,
            )
            raise QuotaExceededError(
                "Monthly AI token quota exceeded",
                extra={"tokensRemaining": 0},
            )
        return QuotaCheck(current_tokens=current, token_limit=token_limit)

    async def commit(
        self,
        session: AsyncSession,
        *,
        owner_id: str,
        org_id: str | None,
        period_start: date,
        tokens_in: int,
        tokens_out: int,
        now: datetime | None = None,
    ) -> None:
        # Increment in the database so concurrent commits never lose an update.
        now = now or self._time_provider()
        if await self._increment(
            session,
            owner_id=owner_id,
            org_id=org_id,
            period_start=period_start,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            now=now,
        ):
            await session.commit()
            return

        session.add(
            AiUsageMonthly(
                owner_id=owner_id,
                org_id=org_id,
                period_start=period_start,
                tokens_in=tokens_in,
                tokens_out=tokens_out,
                requests=1,
                last_request_at=now,
            )
        )
        try:
            await session.commit()
            return
        except IntegrityError:
            # A concurrent request created the row first; fold our usage into it.
            await session.rollback()
            logger.info(
                "quota_row_insert_race owner_id=%s period_start=%s",
                owner_id,
                period_start.isoformat(),
            )

        if not await self._increment(
            session,
            owner_id=owner_id,
            org_id=org_id,
            period_start=period_start,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            now=now,
        ):
            raise RuntimeError("quota row missing after insert conflict")
        await session.commit()

    async def _increment(
        self,
        session: AsyncSession,
        *,
        owner_id: str,
        org_id: str | None,
        period_start: date,
        tokens_in: int,
        tokens_out: int,
        now: datetime,
    ) -> bool:
        values = {
            "tokens_in": AiUsageMonthly.tokens_in + tokens_in,
            "tokens_out": AiUsageMonthly.tokens_out + tokens_out,
            "requests": AiUsageMonthly.requests + 1,
            "last_request_at": now,
        }
        if org_id is not None:
            values["org_id"] = org_id
        result = await session.execute(
            update(AiUsageMonthly)
            .where(
                AiUsageMonthly.owner_id == owner_id,
                AiUsageMonthly.period_start == period_start,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) > 0


_quota_ledger: QuotaLedger | None = None


def get_quota_ledger() -> QuotaLedger:
    # Provide a shared ledger for request handlers.
    global _quota_ledger
    if _quota_ledger is None:
        _quota_ledger = QuotaLedger()
    return _quota_ledger


def reset_quota_ledger() -> None:
    # Reset cached ledger for deterministic tests.
    global _quota_ledger
    _quota_ledger = None


def _utc_now() -> datetime:
    # Use UTC for consistent quota period boundaries.
    return datetime.now(timezone.utc)


def _month_start(now: datetime) -> date:
    # Normalize to the UTC month boundary; naive datetimes are taken as UTC.
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return date(now.year, now.month, 1)
