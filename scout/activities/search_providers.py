"""Web search provider adapters (Brave, Tavily) and the grouped fan-out runner.

Every provider response is validated against a strict schema before use.
A malformed payload counts as zero results for that query; HTTP failures
raise ``SearchProviderError`` so the fan-out runner can record them without
cancelling sibling queries.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

log = structlog.get_logger("scout.search")

BRAVE_WEB_URL = "https://api.search.brave.com/res/v1/web/search"
BRAVE_IMAGES_URL = "https://api.search.brave.com/res/v1/images/search"
TAVILY_SEARCH_URL = "https://api.tavily.com/search"

SEARCH_MAX_RETRIES = 1
SEARCH_RETRY_DELAY = 1.0
_RETRYABLE_STATUS = (429, 500, 502, 503, 504)


class SearchProviderError(Exception):
    def __init__(self, provider: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code


# === Normalized results ===


class SearchHit(BaseModel):
    title: str
    url: str
    snippet: str = ""
    score: float | None = None
    thumbnail: str | None = None


class ImageHit(BaseModel):
    title: str
    url: str
    thumbnail: str | None = None


# === Provider payload schemas ===


class _BraveThumbnail(BaseModel):
    src: str | None = None


class _BraveWebResult(BaseModel):
    title: str
    url: str
    description: str = ""
    age: str | None = None
    thumbnail: _BraveThumbnail | None = None


class _BraveWeb(BaseModel):
    results: list[_BraveWebResult] = []


class _BraveWebResponse(BaseModel):
    web: _BraveWeb | None = None


class _BraveImageProperties(BaseModel):
    url: str | None = None


class _BraveImageResult(BaseModel):
    title: str = ""
    url: str
    source: str | None = None
    thumbnail: _BraveThumbnail | None = None
    properties: _BraveImageProperties | None = None


class _BraveImageResponse(BaseModel):
    results: list[_BraveImageResult] = []


class _TavilyResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str
    url: str
    content: str
    score: float = Field(ge=0, le=1)
    published_date: str | None = None


class _TavilyResponse(BaseModel):
    results: list[_TavilyResult]
    query: str
    response_time: float


# === HTTP ===


async def _send_with_retry(
    provider: str,
    http_client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    query: str,
    timeout: float,
    **kwargs: Any,
) -> httpx.Response:
    """Send one provider request, retrying once on timeouts, 429 and 5xx."""
    for attempt in range(1 + SEARCH_MAX_RETRIES):
        try:
            resp = await http_client.request(method, url, timeout=timeout, **kwargs)
        except httpx.TimeoutException as exc:
            if attempt < SEARCH_MAX_RETRIES:
                log.warning("search_timeout", provider=provider, query=query[:80], attempt=attempt + 1)
                await asyncio.sleep(SEARCH_RETRY_DELAY)
                continue
            raise SearchProviderError(provider, f"timeout for {query[:80]!r}") from exc
        except httpx.RequestError as exc:
            raise SearchProviderError(provider, f"network error: {type(exc).__name__}") from exc

        if 200 <= resp.status_code < 300:
            return resp

        if resp.status_code in _RETRYABLE_STATUS and attempt < SEARCH_MAX_RETRIES:
            log.warning(
                "search_retrying",
                provider=provider,
                status=resp.status_code,
                query=query[:80],
                attempt=attempt + 1,
            )
            await asyncio.sleep(SEARCH_RETRY_DELAY)
            continue

        raise SearchProviderError(
            provider, f"HTTP {resp.status_code}: {resp.text[:200]}", resp.status_code
        )

    raise SearchProviderError(provider, "retries exhausted")


def _parse_payload(provider: str, resp: httpx.Response, schema: type[BaseModel], query: str) -> Any:
    """Validate a provider payload. Returns None when it is malformed."""
    try:
        return schema.model_validate(resp.json())
    except (ValueError, ValidationError) as exc:
        log.warning(
            "search_payload_invalid",
            provider=provider,
            query=query[:80],
            error=str(exc)[:200],
        )
        return None


# === Providers ===


class SearchProvider(Protocol):
    name: str
    supports_images: bool

    async def search(self, query: str) -> list[SearchHit]: ...

    async def search_images(self, query: str) -> list[ImageHit]: ...


class BraveSearchProvider:
    """General web-search backend."""

    name = "brave"
    supports_images = True

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_key: str,
        *,
        results_per_query: int = 12,
        image_count: int = 10,
        timeout: float = 15.0,
    ) -> None:
        self._http = http_client
        self._api_key = api_key
        self._count = results_per_query
        self._image_count = image_count
        self._timeout = timeout

    @property
    def _headers(self) -> dict[str, str]:
        return {"Accept": "application/json", "X-Subscription-Token": self._api_key}

    async def search(self, query: str) -> list[SearchHit]:
        params = {
            "q": query,
            "count": str(self._count),
            "safesearch": "moderate",
            "text_decorations": "false",
        }
        resp = await _send_with_retry(
            self.name,
            self._http,
            "GET",
            BRAVE_WEB_URL,
            query=query,
            timeout=self._timeout,
            params=params,
            headers=self._headers,
        )
        payload = _parse_payload(self.name, resp, _BraveWebResponse, query)
        if payload is None or payload.web is None:
            return []
        return [
            SearchHit(
                title=r.title,
                url=r.url,
                snippet=r.description,
                thumbnail=r.thumbnail.src if r.thumbnail else None,
            )
            for r in payload.web.results
        ]

    async def search_images(self, query: str) -> list[ImageHit]:
        params = {"q": query, "count": str(self._image_count), "safesearch": "strict"}
        resp = await _send_with_retry(
            self.name,
            self._http,
            "GET",
            BRAVE_IMAGES_URL,
            query=query,
            timeout=self._timeout,
            params=params,
            headers=self._headers,
        )
        payload = _parse_payload(self.name, resp, _BraveImageResponse, query)
        if payload is None:
            return []
        return [
            ImageHit(
                title=r.title,
                url=(r.properties.url if r.properties and r.properties.url else r.url),
                thumbnail=r.thumbnail.src if r.thumbnail else None,
            )
            for r in payload.results
        ]


class TavilySearchProvider:
    """AI-oriented search backend with domain allow/deny lists."""

    name = "tavily"
    supports_images = False

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_key: str,
        *,
        include_domains: list[str] | None = None,
        exclude_domains: list[str] | None = None,
        max_results: int = 10,
        timeout: float = 15.0,
    ) -> None:
        self._http = http_client
        self._api_key = api_key
        self._include = include_domains or []
        self._exclude = exclude_domains or []
        self._max_results = max_results
        self._timeout = timeout

    async def search(self, query: str) -> list[SearchHit]:
        body: dict[str, Any] = {
            "query": query,
            "search_depth": "advanced",
            "max_results": self._max_results,
            "include_answer": False,
        }
        if self._include:
            body["include_domains"] = self._include
        if self._exclude:
            body["exclude_domains"] = self._exclude

        resp = await _send_with_retry(
            self.name,
            self._http,
            "POST",
            TAVILY_SEARCH_URL,
            query=query,
            timeout=self._timeout,
            json=body,
            headers={"Authorization": f"Bearer {self._api_key}"},
        )
        payload = _parse_payload(self.name, resp, _TavilyResponse, query)
        if payload is None:
            return []
        return [
            SearchHit(title=r.title, url=r.url, snippet=r.content, score=r.score)
            for r in payload.results
        ]

    async def search_images(self, query: str) -> list[ImageHit]:
        return []


# === Fan-out ===


@dataclass
class SearchBatch:
    hits: list[SearchHit] = field(default_factory=list)
    failures: list[tuple[str, str]] = field(default_factory=list)
    attempted: int = 0


async def search_in_groups(
    provider: SearchProvider,
    queries: list[str],
    group_size: int = 5,
) -> SearchBatch:
    """Run queries in fixed-size concurrent groups, collecting every outcome.

    A failed query is logged and recorded; it never cancels its siblings or
    the groups after it. Hits are de-duplicated by URL in arrival order.
    """
    batch = SearchBatch()
    seen_urls: set[str] = set()
    group_size = max(1, group_size)

    for start in range(0, len(queries), group_size):
        group = queries[start : start + group_size]
        outcomes = await asyncio.gather(
            *(provider.search(q) for q in group), return_exceptions=True
        )
        batch.attempted += len(group)
        for query, outcome in zip(group, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                log.warning(
                    "search_query_failed",
                    provider=provider.name,
                    query=query[:80],
                    error=str(outcome)[:200],
                )
                batch.failures.append((query, str(outcome)))
                continue
            for hit in outcome:  # type: ignore[union-attr]
                if hit.url and hit.url not in seen_urls:
                    seen_urls.add(hit.url)
                    batch.hits.append(hit)

    log.info(
        "search_fanout_complete",
        provider=provider.name,
        queries=len(queries),
        failed=len(batch.failures),
        hits=len(batch.hits),
    )
    return batch


async def collect_images(provider: SearchProvider | None, query: str) -> list[ImageHit]:
    """Best-effort image search. Every failure is logged and swallowed."""
    if provider is None or not provider.supports_images:
        return []
    try:
        return await provider.search_images(f"{query} product")
    except Exception as exc:
        log.warning("image_search_failed", provider=provider.name, error=str(exc)[:200])
        return []


def format_hits_for_prompt(hits: list[SearchHit]) -> str:
    blocks = []
    for hit in hits:
        entry = f"Title: {hit.title}\nURL: {hit.url}\nSnippet: {hit.snippet}"
        if hit.thumbnail:
            entry += f"\nThumbnail: {hit.thumbnail}"
        if hit.score is not None:
            entry += f"\nRelevance: {hit.score}"
        blocks.append(entry)
    return "\n\n---\n\n".join(blocks)


def get_search_provider(
    name: str,
    http_client: httpx.AsyncClient,
    *,
    api_key: str,
    results_per_query: int = 12,
    image_count: int = 10,
    timeout: float = 15.0,
    include_domains: list[str] | None = None,
    exclude_domains: list[str] | None = None,
) -> SearchProvider:
    if name == "brave":
        return BraveSearchProvider(
            http_client,
            api_key,
            results_per_query=results_per_query,
            image_count=image_count,
            timeout=timeout,
        )
    if name == "tavily":
        return TavilySearchProvider(
            http_client,
            api_key,
            include_domains=include_domains,
            exclude_domains=exclude_domains,
            max_results=min(results_per_query, 20),
            timeout=timeout,
        )
    raise ValueError(f"Unsupported search provider: {name!r}")
