from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from graphpilot.core.config import get_settings
from graphpilot.core.errors import EntitlementError
from graphpilot.domain.copilot import Mode, Plan, Task
from graphpilot.persistence.db import SessionLocal
from graphpilot.services.entitlements import resolve_effective_mode, resolve_entitlement
from graphpilot.tests.utils.seed import create_membership, create_org_policy, create_profile, new_id


async def _resolve(user_id: str, mode: Mode = Mode.EDIT, task: Task = Task.CHAT, org_id: str | None = None):
    async with SessionLocal() as session:
        return await resolve_entitlement(
            session, user_id=user_id, requested_mode=mode, task=task, org_id=org_id
        )


@pytest.mark.asyncio
@pytest.mark.parametrize("plan", ["free", "past_due", "canceled", None])
async def test_non_entitled_plans_are_rejected(plan) -> None:
    user_id = new_id("u")
    await create_profile(user_id, plan)
    with pytest.raises(EntitlementError) as exc_info:
        await _resolve(user_id)
    assert exc_info.value.status_code == 402
    assert exc_info.value.code == "NOT_ENTITLED"


@pytest.mark.asyncio
async def test_missing_profile_is_not_entitled() -> None:
    with pytest.raises(EntitlementError) as exc_info:
        await _resolve(new_id("ghost"))
    assert exc_info.value.code == "NOT_ENTITLED"


@pytest.mark.asyncio
@pytest.mark.parametrize("plan", ["pro", "trialing"])
async def test_pro_plans_get_default_limit_and_no_bypass(plan: str) -> None:
    user_id = new_id("u")
    await create_profile(user_id, plan)
    entitlement = await _resolve(user_id, mode=Mode.BYPASS)

    assert entitlement.token_limit == 200_000
    assert entitlement.enterprise_bypass_allowed is False
    assert entitlement.org_id is None
    # Bypass silently falls back to edit outside enterprise orgs.
    assert entitlement.mode == Mode.EDIT


@pytest.mark.asyncio
async def test_enterprise_policy_drives_limits_and_bypass() -> None:
    user_id, org_id = new_id("u"), new_id("org")
    await create_profile(user_id, "enterprise")
    await create_membership(org_id, user_id)
    await create_org_policy(org_id, allow_bypass=True, monthly_token_limit_per_seat=500_000)

    entitlement = await _resolve(user_id, mode=Mode.BYPASS)
    assert entitlement.plan == Plan.ENTERPRISE
    assert entitlement.org_id == org_id
    assert entitlement.token_limit == 500_000
    assert entitlement.enterprise_bypass_allowed is True
    assert entitlement.mode == Mode.BYPASS


@pytest.mark.asyncio
async def test_enterprise_without_policy_row_uses_defaults() -> None:
    user_id, org_id = new_id("u"), new_id("org")
    await create_profile(user_id, "enterprise")
    await create_membership(org_id, user_id)

    entitlement = await _resolve(user_id, mode=Mode.BYPASS)
    assert entitlement.token_limit == 1_000_000
    assert entitlement.enterprise_bypass_allowed is False
    assert entitlement.mode == Mode.EDIT


@pytest.mark.asyncio
async def test_enterprise_without_membership_keeps_pro_limits() -> None:
    user_id = new_id("u")
    await create_profile(user_id, "enterprise")

    entitlement = await _resolve(user_id, mode=Mode.BYPASS)
    assert entitlement.org_id is None
    assert entitlement.token_limit == 200_000
    assert entitlement.mode == Mode.EDIT


@pytest.mark.asyncio
async def test_org_disabled_ai_is_forbidden() -> None:
    user_id, org_id = new_id("u"), new_id("org")
    await create_profile(user_id, "enterprise")
    await create_membership(org_id, user_id)
    await create_org_policy(org_id, ai_enabled=False)

    with pytest.raises(EntitlementError) as exc_info:
        await _resolve(user_id)
    assert exc_info.value.status_code == 403
    assert exc_info.value.code == "AI_DISABLED"


@pytest.mark.asyncio
async def test_empty_allowed_modes_blocks_every_mode() -> None:
    user_id, org_id = new_id("u"), new_id("org")
    await create_profile(user_id, "enterprise")
    await create_membership(org_id, user_id)
    await create_org_policy(org_id, ai_allowed_modes=[])

    with pytest.raises(EntitlementError) as exc_info:
        await _resolve(user_id, mode=Mode.PLAN)
    assert exc_info.value.status_code == 403
    assert exc_info.value.code == "MODE_BLOCKED"


@pytest.mark.asyncio
async def test_disallowed_mode_downgrades_to_plan() -> None:
    user_id, org_id = new_id("u"), new_id("org")
    await create_profile(user_id, "enterprise")
    await create_membership(org_id, user_id)
    await create_org_policy(org_id, ai_allowed_modes=["plan"], allow_bypass=True)

    entitlement = await _resolve(user_id, mode=Mode.BYPASS)
    assert entitlement.mode == Mode.PLAN


@pytest.mark.asyncio
async def test_explicit_org_requires_membership() -> None:
    user_id = new_id("u")
    await create_profile(user_id, "enterprise")
    await create_membership(new_id("org"), user_id)

    with pytest.raises(EntitlementError) as exc_info:
        await _resolve(user_id, org_id=new_id("other-org"))
    assert exc_info.value.code == "ORG_NOT_MEMBER"


@pytest.mark.asyncio
async def test_earliest_membership_is_chosen_without_explicit_org() -> None:
    user_id = new_id("u")
    first_org, second_org = new_id("org-a"), new_id("org-b")
    joined = datetime(2026, 1, 1, tzinfo=timezone.utc)
    await create_profile(user_id, "enterprise")
    await create_membership(second_org, user_id, joined_at=joined + timedelta(days=30))
    await create_membership(first_org, user_id, joined_at=joined)
    await create_org_policy(first_org, monthly_token_limit_per_seat=123)
    await create_org_policy(second_org, monthly_token_limit_per_seat=456)

    entitlement = await _resolve(user_id)
    assert entitlement.org_id == first_org
    assert entitlement.token_limit == 123

    explicit = await _resolve(user_id, org_id=second_org)
    assert explicit.org_id == second_org
    assert explicit.token_limit == 456


@pytest.mark.asyncio
async def test_internal_flags_need_deployment_opt_in(monkeypatch) -> None:
    user_id = new_id("dev")
    await create_profile(user_id, "free", is_developer=True)
    with pytest.raises(EntitlementError):
        await _resolve(user_id)

    monkeypatch.setenv("INTERNAL_TOOLING_ENTERPRISE", "true")
    get_settings.cache_clear()
    entitlement = await _resolve(user_id)
    assert entitlement.plan == Plan.ENTERPRISE


def test_explain_node_always_resolves_to_plan() -> None:
    mode = resolve_effective_mode(
        Mode.BYPASS,
        task=Task.EXPLAIN_NODE,
        plan=Plan.ENTERPRISE,
        allowed_modes=frozenset({Mode.PLAN, Mode.EDIT, Mode.BYPASS}),
        enterprise_bypass_allowed=True,
    )
    assert mode == Mode.PLAN


def test_bypass_downgrade_skips_disallowed_edit() -> None:
    mode = resolve_effective_mode(
        Mode.BYPASS,
        task=Task.CHAT,
        plan=Plan.PRO,
        allowed_modes=frozenset({Mode.PLAN, Mode.BYPASS}),
        enterprise_bypass_allowed=False,
    )
    assert mode == Mode.PLAN


def test_denied_bypass_with_only_bypass_allowed_is_blocked() -> None:
    with pytest.raises(EntitlementError) as exc_info:
        resolve_effective_mode(
            Mode.BYPASS,
            task=Task.CHAT,
            plan=Plan.ENTERPRISE,
            allowed_modes=frozenset({Mode.BYPASS}),
            enterprise_bypass_allowed=False,
        )
    assert exc_info.value.code == "MODE_BLOCKED"
