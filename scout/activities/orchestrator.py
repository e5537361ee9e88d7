"""One orchestration round: fan-out -> search -> extract -> associate images -> curate.

Provider failures are absorbed inside the round. Anything that escapes
``run_search_round`` (model service down, missing API key) is a round
failure and is handled by the job actor.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import httpx
import structlog

from scout.activities.curation import CURATED_COUNT, curate_products
from scout.activities.extraction import attach_images, extract_candidates
from scout.activities.query_builder import MAX_SEARCH_QUERIES, build_search_queries, retailer_domains
from scout.activities.search_providers import (
    SearchProvider,
    collect_images,
    format_hits_for_prompt,
    get_search_provider,
    search_in_groups,
)
from scout.config import Settings, settings
from scout.models.contracts import RoundResult, SearchRequest, TokenUsage
from scout.utils.llm import AnthropicLLM, LLMClient

log = structlog.get_logger("scout.orchestrator")

RoundRunner = Callable[[SearchRequest], Awaitable[RoundResult]]


@dataclass(frozen=True)
class RoundLimits:
    max_queries: int = MAX_SEARCH_QUERIES
    group_size: int = 5
    curated_count: int = CURATED_COUNT
    extraction_max_tokens: int = 4000
    curation_max_tokens: int = 2000

    @classmethod
    def from_settings(cls, cfg: Settings) -> RoundLimits:
        return cls(
            max_queries=cfg.max_search_queries,
            group_size=cfg.search_group_size,
            curated_count=cfg.curated_product_count,
            extraction_max_tokens=cfg.extraction_max_tokens,
            curation_max_tokens=cfg.curation_max_tokens,
        )


async def run_search_round(
    request: SearchRequest,
    *,
    llm: LLMClient,
    provider: SearchProvider,
    image_provider: SearchProvider | None = None,
    limits: RoundLimits | None = None,
) -> RoundResult:
    """Run one full round for ``request``.

    ``usage.api_calls`` counts every attempted provider request, the image
    search attempt and each model call.
    """
    limits = limits or RoundLimits()
    queries = build_search_queries(
        request.query,
        request.profile,
        request.structured,
        provider=provider.name,  # type: ignore[arg-type]
        max_queries=limits.max_queries,
    )
    log.info("round_started", provider=provider.name, queries=len(queries))

    images_attempted = image_provider is not None and image_provider.supports_images
    batch, images = await asyncio.gather(
        search_in_groups(provider, queries, limits.group_size),
        collect_images(image_provider, request.query),
    )
    usage = TokenUsage(api_calls=batch.attempted + (1 if images_attempted else 0))

    if not batch.hits:
        log.info("round_no_search_hits", failed_queries=len(batch.failures))
        return RoundResult(usage=usage, outcome="no_candidates")

    candidates, extraction_usage = await extract_candidates(
        llm,
        format_hits_for_prompt(batch.hits),
        request,
        max_tokens=limits.extraction_max_tokens,
    )
    usage = usage + extraction_usage
    if not candidates:
        return RoundResult(usage=usage, outcome="no_candidates")

    candidates = attach_images(candidates, images)

    curation = await curate_products(
        llm,
        candidates,
        request,
        count=limits.curated_count,
        max_tokens=limits.curation_max_tokens,
    )
    usage = usage + curation.usage

    log.info(
        "round_complete",
        hits=len(batch.hits),
        candidates=len(candidates),
        curated=len(curation.items),
        api_calls=usage.api_calls,
    )
    return RoundResult(
        raw=candidates,
        curated=curation.items,
        usage=usage,
        outcome="no_curated_output" if curation.no_output else "ok",
    )


class SearchRoundRunner:
    """Binds configuration, the shared HTTP client and the model client.

    The job actor only sees ``await runner(request)``.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        llm: LLMClient,
        cfg: Settings = settings,
    ) -> None:
        self._http = http_client
        self._llm = llm
        self._cfg = cfg
        self._limits = RoundLimits.from_settings(cfg)

    @classmethod
    def from_settings(cls, http_client: httpx.AsyncClient, cfg: Settings = settings) -> SearchRoundRunner:
        if not cfg.anthropic_api_key:
            raise ValueError("ANTHROPIC_API_KEY is not configured")
        return cls(http_client, AnthropicLLM.from_api_key(cfg.anthropic_api_key, cfg.llm_model), cfg)

    def _api_key(self, provider: str) -> str:
        key = self._cfg.brave_api_key if provider == "brave" else self._cfg.tavily_api_key
        if not key:
            raise ValueError(f"{provider.upper()}_API_KEY is not configured")
        return key

    def _provider_for(self, request: SearchRequest) -> SearchProvider:
        name = request.provider
        return get_search_provider(
            name,
            self._http,
            api_key=self._api_key(name),
            results_per_query=self._cfg.results_per_query,
            image_count=self._cfg.image_search_count,
            timeout=self._cfg.provider_timeout_seconds,
            include_domains=(
                retailer_domains(request.profile, request.query) if name == "tavily" else None
            ),
            exclude_domains=list(request.profile.excluded_retailers) if name == "tavily" else None,
        )

    def _image_provider(self, provider: SearchProvider) -> SearchProvider | None:
        if provider.supports_images:
            return provider
        if not self._cfg.brave_api_key:
            return None
        return get_search_provider(
            "brave",
            self._http,
            api_key=self._cfg.brave_api_key,
            image_count=self._cfg.image_search_count,
            timeout=self._cfg.provider_timeout_seconds,
        )

    async def __call__(self, request: SearchRequest) -> RoundResult:
        provider = self._provider_for(request)
        return await run_search_round(
            request,
            llm=self._llm,
            provider=provider,
            image_provider=self._image_provider(provider),
            limits=self._limits,
        )
