from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from graphpilot.agent.prompts import build_system_prompt, build_user_prompt
from graphpilot.core.config import get_settings
from graphpilot.core.errors import ValidationError
from graphpilot.domain.copilot import CopilotRequest, Mode, Scope, Task
from graphpilot.providers.llm.base import LLMProvider
from graphpilot.providers.llm.factory import get_llm_provider
from graphpilot.services.audit import record_ai_request
from graphpilot.services.context import build_context_summary, estimate_tokens
from graphpilot.services.entitlements import resolve_entitlement
from graphpilot.services.graph_source import load_canvas_document
from graphpilot.services.identity import IdentityVerifier
from graphpilot.services.model_invoker import ModelInvoker
from graphpilot.services.quota import QuotaLedger, get_quota_ledger, tokens_remaining
from graphpilot.services.risk import assess_risk, requires_confirmation
from graphpilot.services.telemetry import increment_counter, record_stage


logger = logging.getLogger(__name__)

# Optional task payloads passed through to the client when the model returns them.
_TASK_EXTRAS = ("explanation", "template", "theme")


def _non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and bool(value)


def _is_member(value: Any, enum_cls: type) -> bool:
    return isinstance(value, str) and value in {member.value for member in enum_cls}


def parse_copilot_request(payload: Any, *, max_prompt_length: int | None = None) -> CopilotRequest:
    """Validate a decoded request body, checking fields in a fixed order.

    The first failing field determines the error message so clients see the
    same message for the same mistake regardless of what else is wrong.
    """
    limit = max_prompt_length if max_prompt_length is not None else get_settings().max_prompt_length
    if not isinstance(payload, Mapping):
        raise ValidationError("Invalid JSON body")

    if not _is_member(payload.get("mode"), Mode):
        raise ValidationError("Invalid mode")
    if not _is_member(payload.get("scope"), Scope):
        raise ValidationError("Invalid scope")
    user_message = payload.get("userMessage")
    if not _non_empty_string(user_message):
        raise ValidationError("Missing userMessage")
    if len(user_message) > limit:
        raise ValidationError(f"Message too long (max {limit} chars)")
    if not _non_empty_string(payload.get("projectId")) or not _non_empty_string(payload.get("canvasId")):
        raise ValidationError("Missing projectId or canvasId")

    try:
        return CopilotRequest.model_validate(dict(payload))
    except PydanticValidationError as exc:
        # Remaining shape errors live in optional fields such as clientContext.
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise ValidationError(f"Invalid field: {location}" if location else "Invalid request body") from exc


class CopilotService:
    """Run one copilot request through auth, entitlement, quota, context, model, and scoring.

    Stages run strictly in sequence since each depends on the previous result.
    Quota is committed only after a validated model response, and the audit row
    is written after the quota commit.
    """

    def __init__(
        self,
        *,
        identity: IdentityVerifier,
        provider_factory: Callable[[], LLMProvider] = get_llm_provider,
        ledger: QuotaLedger | None = None,
    ) -> None:
        self._identity = identity
        self._provider_factory = provider_factory
        self._ledger = ledger or get_quota_ledger()

    def ensure_configured(self) -> None:
        # Backend credentials first (503), then identity settings (500), before reading the body.
        self._provider_factory()
        self._identity.ensure_configured()

    def _stage(self, request_id: str | None, stage: str) -> None:
        logger.info("copilot_stage request_id=%s stage=%s", request_id, stage)
        record_stage(stage)

    async def handle(
        self,
        session: AsyncSession,
        request: CopilotRequest | Mapping[str, Any],
        *,
        bearer_token: str,
        request_id: str | None = None,
    ) -> dict[str, Any]:
        settings = get_settings()
        if not isinstance(request, CopilotRequest):
            request = parse_copilot_request(request)
        self._stage(request_id, "received")

        identity = await self._identity.verify_token(bearer_token)
        user_id = identity.user_id
        self._stage(request_id, "authenticated")

        entitlement = await resolve_entitlement(
            session,
            user_id=user_id,
            requested_mode=request.mode,
            task=request.task,
            org_id=request.org_id,
        )
        mode = entitlement.mode
        self._stage(request_id, "entitled")

        period_start = self._ledger.current_period_start()
        check = await self._ledger.check_and_reserve(
            session,
            owner_id=user_id,
            period_start=period_start,
            token_limit=entitlement.token_limit,
        )
        self._stage(request_id, "quota_checked")

        document = await load_canvas_document(
            session,
            canvas_id=request.canvas_id,
            owner_id=user_id,
            project_id=request.project_id,
        )
        diagnostics = request.client_context.diagnostics if request.client_context else []
        context_summary = build_context_summary(
            document,
            scope=request.scope,
            selected_node_ids=request.selected_node_ids,
            diagnostics=diagnostics,
            max_nodes=settings.context_max_nodes,
            max_edges=settings.context_max_edges,
            max_diagnostics=settings.context_max_diagnostics,
        )
        logger.debug(
            "copilot_context request_id=%s context_tokens_est=%s",
            request_id,
            estimate_tokens(context_summary),
        )
        # Release the read transaction before the slow model call.
        await session.commit()
        self._stage(request_id, "context_built")

        invoker = ModelInvoker(self._provider_factory(), request_id=request_id)
        invocation = await invoker.invoke(
            build_system_prompt(mode, request.task),
            build_user_prompt(request.user_message, context_summary),
        )
        self._stage(request_id, "model_invoked")

        parsed = invocation.parsed
        ops = list(parsed["patch"]["ops"])
        if request.task == Task.EXPLAIN_NODE:
            # explain_node never mutates the graph.
            ops = []
        self._stage(request_id, "validated")

        risk = assess_risk(ops)
        needs_confirmation = requires_confirmation(
            risk["level"], mode, entitlement.enterprise_bypass_allowed
        )
        logger.debug(
            "copilot_model_risk request_id=%s model_level=%s scored_level=%s",
            request_id,
            parsed["risk"]["level"],
            risk["level"],
        )
        self._stage(request_id, "scored")

        tokens_in = invocation.usage.input_tokens
        tokens_out = invocation.usage.output_tokens
        now = self._ledger.now()
        await self._ledger.commit(
            session,
            owner_id=user_id,
            org_id=entitlement.org_id,
            period_start=period_start,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            now=now,
        )
        await record_ai_request(
            session,
            owner_id=user_id,
            org_id=entitlement.org_id,
            request_id=request_id,
            mode=mode.value,
            task=request.task.value,
            model=invoker.model,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            ops_count=len(ops),
            risk_level=risk["level"],
            response_id=invocation.response_id,
        )
        increment_counter("copilot_requests_total")
        increment_counter("copilot_tokens_total", tokens_in + tokens_out)
        self._stage(request_id, "logged")

        response: dict[str, Any] = {
            "ok": True,
            "task": request.task.value,
            "mode": mode.value,
            "message": parsed["message"],
            "assumptions": parsed["assumptions"],
            "risk": risk,
            "requiresConfirmation": needs_confirmation,
            "patchOps": ops,
            "usage": {"tokensIn": tokens_in, "tokensOut": tokens_out},
            "tokensRemaining": tokens_remaining(
                check.token_limit, check.current_tokens, tokens_in, tokens_out
            ),
        }
        for key in _TASK_EXTRAS:
            if parsed.get(key):
                response[key] = parsed[key]
        self._stage(request_id, "responded")
        return response
