from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from graphpilot.persistence.db import get_session
from graphpilot.providers.llm.factory import get_llm_provider
from graphpilot.services.copilot import CopilotService
from graphpilot.services.identity import IdentityVerifier
from graphpilot.services.quota import get_quota_ledger


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


def get_identity_verifier() -> IdentityVerifier:
    return IdentityVerifier()


def get_copilot_service(
    identity: IdentityVerifier = Depends(get_identity_verifier),
) -> CopilotService:
    # Provider and ledger are process-wide singletons; tests override this dependency.
    return CopilotService(
        identity=identity,
        provider_factory=get_llm_provider,
        ledger=get_quota_ledger(),
    )
