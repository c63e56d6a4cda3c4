from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import Any

from graphpilot.agent.prompts import build_messages, build_repair_messages
from graphpilot.core.errors import ModelError
from graphpilot.providers.llm.base import LLMProvider
from graphpilot.services.response_validator import validate_ai_response
from graphpilot.services.telemetry import increment_counter


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )


@dataclass(frozen=True)
class Invocation:
    parsed: dict[str, Any]
    usage: TokenUsage
    response_id: str
    repaired: bool = False


def _parse_json(text: str) -> Any:
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return None


class ModelInvoker:
    """Call the model once, and repair its output at most once.

    At most two provider round-trips are made per invocation.
    """

    def __init__(self, provider: LLMProvider, *, request_id: str | None = None) -> None:
        self._provider = provider
        self._request_id = request_id

    @property
    def model(self) -> str:
        return self._provider.model

    async def invoke(self, system_prompt: str, user_prompt: str) -> Invocation:
        first = await self._provider.complete(build_messages(system_prompt, user_prompt))
        usage = TokenUsage(first.input_tokens, first.output_tokens)

        validated = validate_ai_response(_parse_json(first.output_text))
        if validated is not None:
            return Invocation(parsed=validated, usage=usage, response_id=first.id)

        logger.warning("model_output_invalid request_id=%s attempt=1", self._request_id)
        increment_counter("copilot_repair_attempts_total")
        repair = await self._provider.complete(
            build_repair_messages(system_prompt, user_prompt, first.output_text)
        )
        usage = usage + TokenUsage(repair.input_tokens, repair.output_tokens)

        validated = validate_ai_response(_parse_json(repair.output_text))
        if validated is None:
            increment_counter("copilot_repair_failures_total")
            logger.error(
                "model_output_invalid request_id=%s attempt=2 tokens_in=%s tokens_out=%s",
                self._request_id,
                usage.input_tokens,
                usage.output_tokens,
            )
            raise ModelError(
                "AI returned invalid JSON even after repair",
                code="AI_INVALID_RESPONSE",
            )
        return Invocation(parsed=validated, usage=usage, response_id=first.id, repaired=True)
