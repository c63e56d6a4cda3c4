from __future__ import annotations

import os
from pathlib import Path
import tempfile

import pytest

# Point the engine at a throwaway SQLite file before graphpilot.persistence.db is imported.
_TEST_DB_DIR = tempfile.mkdtemp(prefix="graphpilot-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{Path(_TEST_DB_DIR) / 'test.db'}"
os.environ["LLM_PROVIDER"] = "fake"
os.environ.setdefault("IDENTITY_URL", "http://identity.test")
os.environ.setdefault("IDENTITY_SERVICE_KEY", "test-service-key")

from graphpilot.core.config import get_settings  # noqa: E402
from graphpilot.domain.models import Base  # noqa: E402
from graphpilot.persistence.db import engine  # noqa: E402
from graphpilot.providers.llm.factory import reset_llm_provider  # noqa: E402
from graphpilot.services.quota import reset_quota_ledger  # noqa: E402
from graphpilot.services.telemetry import reset_telemetry  # noqa: E402


@pytest.fixture(autouse=True)
async def database_schema() -> None:
    # Fresh schema per test so rows never leak across cases.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    await engine.dispose()


@pytest.fixture(autouse=True)
def reset_singletons() -> None:
    # Clear cached settings and services so env tweaks in one test do not leak.
    get_settings.cache_clear()
    reset_llm_provider()
    reset_quota_ledger()
    reset_telemetry()
    yield
    get_settings.cache_clear()
    reset_llm_provider()
    reset_quota_ledger()
