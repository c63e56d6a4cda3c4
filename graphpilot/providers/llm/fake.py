from __future__ import annotations

import json
from typing import Any, Iterable

from graphpilot.providers.llm.base import Completion


_DEFAULT_RESPONSE = {
    "mode": "plan",
    "message": "This is a fake response.",
    "assumptions": [],
    "risk": {"level": "low", "reasons": []},
    "patch": {"ops": []},
}


class FakeLLMProvider:
    def __init__(
        self,
        responses: Iterable[str | dict[str, Any]] | None = None,
        *,
        model: str = "fake-model",
        input_tokens: int = 10,
        output_tokens: int = 5,
    ) -> None:
        # Scripted outputs are returned in order; the last one repeats once exhausted.
        scripted = list(responses) if responses is not None else [_DEFAULT_RESPONSE]
        self._responses = [r if isinstance(r, str) else json.dumps(r) for r in scripted]
        self.model = model
        self._input_tokens = input_tokens
        self._output_tokens = output_tokens
        self.calls: list[list[dict[str, str]]] = []

    async def complete(self, messages: list[dict[str, str]]) -> Completion:
        self.calls.append(list(messages))
        index = min(len(self.calls), len(self._responses)) - 1
        return Completion(
            id=f"fake-resp-{len(self.calls)}",
            output_text=self._responses[index],
            input_tokens=self._input_tokens,
            output_tokens=self._output_tokens,
        )
