from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class Completion:
    # Single non-streamed completion; output_text is the raw JSON text from the model.
    id: str
    output_text: str
    input_tokens: int = 0
    output_tokens: int = 0


class LLMProvider(Protocol):
    model: str

    async def complete(self, messages: list[dict[str, str]]) -> Completion:
        ...
