from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from graphpilot.core.config import get_settings
from graphpilot.core.errors import BackendNotConfiguredError, ModelError
from graphpilot.providers.llm.base import Completion
from graphpilot.services.telemetry import record_external_call


logger = logging.getLogger(__name__)

_INTEGRATION = "llm.openai"


def _extract_output_text(body: dict[str, Any]) -> str:
    # Responses API nests text under output[].content[]; take the first output_text part.
    for item in body.get("output") or []:
        if not isinstance(item, dict):
            continue
        for part in item.get("content") or []:
            if isinstance(part, dict) and isinstance(part.get("text"), str):
                return part["text"]
    return "{}"


def _usage_value(usage: Any, key: str) -> int:
    if not isinstance(usage, dict):
        return 0
    value = usage.get(key)
    return int(value) if isinstance(value, (int, float)) else 0


class OpenAIResponsesProvider:
    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = get_settings()
        self._api_key = api_key if api_key is not None else self._settings.openai_api_key
        self.model = model or self._settings.ai_model
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        # Reuse a single client per provider for connection pooling.
        timeout_s = self._settings.ext_call_timeout_ms / 1000.0
        self._client = httpx.AsyncClient(timeout=timeout_s)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def complete(self, messages: list[dict[str, str]]) -> Completion:
        if not self._api_key:
            raise BackendNotConfiguredError("AI service not configured")

        payload = {
            "model": self.model,
            # Never persist prompts or completions on the provider side.
            "store": False,
            "input": messages,
            "text": {"format": {"type": "json_object"}},
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}
        url = f"{self._settings.openai_base_url.rstrip('/')}/responses"
        client = self._get_client()

        start = time.monotonic()
        try:
            response = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            record_external_call(
                integration=_INTEGRATION,
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            logger.warning("openai_request_failed error=%s", type(exc).__name__)
            raise ModelError("AI provider request failed", code="AI_PROVIDER_ERROR") from exc

        latency_ms = (time.monotonic() - start) * 1000.0
        if response.status_code >= 400:
            record_external_call(integration=_INTEGRATION, latency_ms=latency_ms, success=False)
            # Log a truncated body only; upstream error payloads are never echoed to clients.
            limit = self._settings.provider_error_body_limit
            logger.error(
                "openai_error status=%s body=%s",
                response.status_code,
                response.text[:limit],
            )
            raise ModelError("AI provider request failed", code="AI_PROVIDER_ERROR")

        try:
            body = response.json()
        except ValueError as exc:
            record_external_call(integration=_INTEGRATION, latency_ms=latency_ms, success=False)
            raise ModelError("AI provider returned a non-JSON body", code="AI_PROVIDER_ERROR") from exc

        record_external_call(integration=_INTEGRATION, latency_ms=latency_ms, success=True)
        body = body if isinstance(body, dict) else {}
        usage = body.get("usage")
        return Completion(
            id=str(body.get("id") or ""),
            output_text=_extract_output_text(body),
            input_tokens=_usage_value(usage, "input_tokens"),
            output_tokens=_usage_value(usage, "output_tokens"),
        )
