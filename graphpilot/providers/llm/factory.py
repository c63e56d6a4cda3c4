from __future__ import annotations

from graphpilot.core.config import get_settings
from graphpilot.core.errors import BackendNotConfiguredError
from graphpilot.providers.llm.base import LLMProvider
from graphpilot.providers.llm.fake import FakeLLMProvider
from graphpilot.providers.llm.openai_responses import OpenAIResponsesProvider


_provider: LLMProvider | None = None


def get_llm_provider() -> LLMProvider:
    # Cache the provider so its HTTP client pools connections across requests.
    global _provider
    if _provider is not None:
        return _provider

    settings = get_settings()
    provider = (settings.llm_provider or "openai").lower()

    if provider == "fake":
        _provider = FakeLLMProvider()
    elif provider == "openai":
        if not settings.openai_api_key:
            # Surface 503 before any auth or quota work is done.
            raise BackendNotConfiguredError("AI service not configured")
        _provider = OpenAIResponsesProvider()
    else:
        raise BackendNotConfiguredError(f"Unsupported LLM provider: {provider}")
    return _provider


def reset_llm_provider() -> None:
    # Drop the cached provider after settings changes and between tests.
    global _provider
    _provider = None
