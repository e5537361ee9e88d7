"""In-process fakes for the LLM, search providers and wakeup scheduler."""

from __future__ import annotations

from scout.activities.search_providers import ImageHit, SearchHit, SearchProviderError
from scout.utils.llm import LLMResponse


class ScriptedLLM:
    """Returns queued responses in order; records every call."""

    def __init__(self, *responses: str, input_tokens: int = 100, output_tokens: int = 50) -> None:
        self.responses = list(responses)
        self.calls: list[tuple[str, str, int]] = []
        self._input = input_tokens
        self._output = output_tokens

    async def complete(self, system: str, user: str, max_tokens: int) -> LLMResponse:
        self.calls.append((system, user, max_tokens))
        text = self.responses.pop(0) if self.responses else ""
        return LLMResponse(text=text, input_tokens=self._input, output_tokens=self._output)


class StaticProvider:
    """Same hits for every query; queries listed in ``fail`` raise."""

    def __init__(
        self,
        hits: list[SearchHit] | None = None,
        *,
        name: str = "brave",
        fail: set[str] | None = None,
        images: list[ImageHit] | None = None,
        supports_images: bool = True,
    ) -> None:
        self.name = name
        self.supports_images = supports_images
        self._hits = hits or []
        self._fail = fail or set()
        self._images = images or []
        self.queries: list[str] = []
        self.image_queries: list[str] = []

    async def search(self, query: str) -> list[SearchHit]:
        self.queries.append(query)
        if query in self._fail:
            raise SearchProviderError(self.name, "HTTP 500: boom", 500)
        return list(self._hits)

    async def search_images(self, query: str) -> list[ImageHit]:
        self.image_queries.append(query)
        return list(self._images)


class RecordingScheduler:
    def __init__(self) -> None:
        self.calls: list[tuple[str, float]] = []

    async def schedule(self, job_id: str, delay_seconds: float = 0.0) -> None:
        self.calls.append((job_id, delay_seconds))
