from __future__ import annotations

from dataclasses import dataclass
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from graphpilot.core.config import get_settings
from graphpilot.core.errors import EntitlementError
from graphpilot.domain.copilot import ALL_MODES, NON_ENTITLED_PLANS, Mode, Plan, Task
from graphpilot.domain.models import AiOrgPolicy, OrgMember, Profile


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrgPolicy:
    allow_bypass: bool
    monthly_token_limit_per_seat: int
    ai_enabled: bool
    ai_allowed_modes: frozenset[Mode]


@dataclass(frozen=True)
class Entitlement:
    # Resolved access for one request; mode is the effective mode after downgrades.
    plan: Plan
    token_limit: int
    ai_enabled: bool
    allowed_modes: frozenset[Mode]
    enterprise_bypass_allowed: bool
    org_id: str | None
    mode: Mode


def default_org_policy() -> OrgPolicy:
    settings = get_settings()
    return OrgPolicy(
        allow_bypass=False,
        monthly_token_limit_per_seat=settings.enterprise_default_token_limit,
        ai_enabled=True,
        ai_allowed_modes=frozenset(ALL_MODES),
    )


def _not_entitled() -> EntitlementError:
    return EntitlementError(
        "AI Copilot requires a Pro or Enterprise subscription",
        code="NOT_ENTITLED",
        status_code=402,
    )


def _parse_plan(value: str | None) -> Plan:
    # Unknown or missing plans are treated as free.
    try:
        return Plan(value) if value else Plan.FREE
    except ValueError:
        logger.warning("profile_plan_unknown plan=%s", value)
        return Plan.FREE


def _parse_modes(value: object) -> frozenset[Mode]:
    if not isinstance(value, list):
        return frozenset(ALL_MODES)
    modes = set()
    for item in value:
        try:
            modes.add(Mode(item))
        except ValueError:
            logger.warning("org_policy_mode_unknown mode=%s", item)
    return frozenset(modes)


async def load_profile_plan(session: AsyncSession, user_id: str) -> Plan:
    """Resolve the user's plan from their billing profile.

    Developer/admin accounts count as enterprise only when the deployment runs
    with ``INTERNAL_TOOLING_ENTERPRISE`` enabled; otherwise the stored plan wins.
    """
    result = await session.execute(select(Profile).where(Profile.id == user_id))
    profile = result.scalar_one_or_none()
    if profile is None:
        return Plan.FREE
    if (profile.is_developer or profile.is_admin) and get_settings().internal_tooling_enterprise:
        logger.info("internal_tooling_entitlement user_id=%s", user_id)
        return Plan.ENTERPRISE
    return _parse_plan(profile.plan)


async def resolve_org_membership(
    session: AsyncSession, user_id: str, requested_org_id: str | None = None
) -> str | None:
    # Honor an explicit organization; otherwise use the earliest membership for a stable choice.
    if requested_org_id:
        result = await session.execute(
            select(OrgMember.org_id).where(
                OrgMember.user_id == user_id,
                OrgMember.org_id == requested_org_id,
            )
        )
        org_id = result.scalar_one_or_none()
        if org_id is None:
            raise EntitlementError(
                "You are not a member of the requested organization",
                code="ORG_NOT_MEMBER",
                status_code=403,
            )
        return org_id

    result = await session.execute(
        select(OrgMember.org_id)
        .where(OrgMember.user_id == user_id)
        .order_by(OrgMember.joined_at, OrgMember.org_id)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def load_org_policy(session: AsyncSession, org_id: str) -> OrgPolicy:
    # Missing rows and NULL columns both fall back to the enterprise defaults.
    defaults = default_org_policy()
    result = await session.execute(select(AiOrgPolicy).where(AiOrgPolicy.org_id == org_id))
    row = result.scalar_one_or_none()
    if row is None:
        return defaults
    return OrgPolicy(
        allow_bypass=bool(row.allow_bypass) if row.allow_bypass is not None else defaults.allow_bypass,
        monthly_token_limit_per_seat=(
            row.monthly_token_limit_per_seat
            if row.monthly_token_limit_per_seat is not None
            else defaults.monthly_token_limit_per_seat
        ),
        ai_enabled=bool(row.ai_enabled) if row.ai_enabled is not None else defaults.ai_enabled,
        ai_allowed_modes=_parse_modes(row.ai_allowed_modes),
    )


def _downgrade(allowed: frozenset[Mode]) -> Mode | None:
    # Most permissive non-bypass mode the policy still allows.
    for candidate in (Mode.EDIT, Mode.PLAN):
        if candidate in allowed:
            return candidate
    return None


def resolve_effective_mode(
    requested: Mode,
    *,
    task: Task,
    plan: Plan,
    allowed_modes: frozenset[Mode],
    enterprise_bypass_allowed: bool,
) -> Mode:
    mode = requested
    # Bypass needs an enterprise org that explicitly allows it; otherwise fall back silently.
    bypass_denied = mode == Mode.BYPASS and (plan != Plan.ENTERPRISE or not enterprise_bypass_allowed)
    if mode not in allowed_modes or bypass_denied:
        downgraded = _downgrade(allowed_modes)
        if downgraded is None:
            raise EntitlementError(
                "No AI modes allowed by your organization",
                code="MODE_BLOCKED",
                status_code=403,
            )
        mode = downgraded

    # explain_node is read-only whatever the caller asked for.
    if task == Task.EXPLAIN_NODE:
        mode = Mode.PLAN
    return mode


async def resolve_entitlement(
    session: AsyncSession,
    *,
    user_id: str,
    requested_mode: Mode,
    task: Task,
    org_id: str | None = None,
) -> Entitlement:
    settings = get_settings()
    plan = await load_profile_plan(session, user_id)
    if plan in NON_ENTITLED_PLANS:
        raise _not_entitled()

    resolved_org_id: str | None = None
    token_limit = settings.pro_monthly_token_limit
    ai_enabled = True
    allowed_modes = frozenset(ALL_MODES)
    bypass_allowed = False

    if plan == Plan.ENTERPRISE:
        resolved_org_id = await resolve_org_membership(session, user_id, org_id)
        # Enterprise seats without an organization keep pro limits and never bypass.
        if resolved_org_id is not None:
            policy = await load_org_policy(session, resolved_org_id)
            token_limit = policy.monthly_token_limit_per_seat
            ai_enabled = policy.ai_enabled
            allowed_modes = policy.ai_allowed_modes
            bypass_allowed = policy.allow_bypass

    if not ai_enabled:
        raise EntitlementError(
            "AI Copilot is disabled by your organization",
            code="AI_DISABLED",
            status_code=403,
        )

    mode = resolve_effective_mode(
        requested_mode,
        task=task,
        plan=plan,
        allowed_modes=allowed_modes,
        enterprise_bypass_allowed=bypass_allowed,
    )
    if mode != requested_mode:
        logger.info(
            "copilot_mode_downgraded user_id=%s requested=%s effective=%s",
            user_id,
            requested_mode.value,
            mode.value,
        )

    return Entitlement(
        plan=plan,
        token_limit=token_limit,
        ai_enabled=ai_enabled,
        allowed_modes=allowed_modes,
        enterprise_bypass_allowed=bypass_allowed,
        org_id=resolved_org_id,
        mode=mode,
    )
