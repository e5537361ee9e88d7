"""Language-model service used by the extraction and curation passes.

The core only needs "system instruction + user content in, text + token
counts out". ``AnthropicLLM`` is the production implementation; tests pass
any object with a matching ``complete`` coroutine.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import anthropic
import structlog

log = structlog.get_logger("scout.llm")


@dataclass(frozen=True)
class LLMResponse:
    text: str
    input_tokens: int = 0
    output_tokens: int = 0


class LLMClient(Protocol):
    async def complete(self, system: str, user: str, max_tokens: int) -> LLMResponse: ...


class AnthropicLLM:
    def __init__(self, client: anthropic.AsyncAnthropic, model: str) -> None:
        self._client = client
        self.model = model

    @classmethod
    def from_api_key(cls, api_key: str, model: str) -> AnthropicLLM:
        return cls(anthropic.AsyncAnthropic(api_key=api_key), model)

    async def complete(self, system: str, user: str, max_tokens: int) -> LLMResponse:
        """Single-turn call. API errors propagate to the caller."""
        response = await self._client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            system=system,
            messages=[{"role": "user", "content": user}],
        )

        text = ""
        for block in response.content:
            if hasattr(block, "text"):
                text += block.text

        log.info(
            "llm_call_tokens",
            model=self.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
        return LLMResponse(
            text=text,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
