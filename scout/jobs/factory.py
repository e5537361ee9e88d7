"""Builds the job components from settings for the API process and the worker."""

from __future__ import annotations

import httpx
import structlog

from scout.activities.orchestrator import RoundRunner, SearchRoundRunner
from scout.config import Settings
from scout.jobs.actor import SearchJobActor
from scout.jobs.store import InMemoryJobStore, JobStore, SqlJobStore
from scout.utils.search_cache import SearchCache

logger = structlog.get_logger()


def build_job_store(cfg: Settings) -> JobStore:
    if cfg.use_database:
        return SqlJobStore.from_url(cfg.database_url)
    if cfg.use_temporal:
        # Worker and API would each hold a private copy of the jobs
        logger.warning("job_store_in_memory_with_temporal")
    return InMemoryJobStore()


def build_round_runner(cfg: Settings, http_client: httpx.AsyncClient) -> RoundRunner:
    if cfg.use_mock_search:
        from scout.activities.mock_stubs import MockSearchRoundRunner

        if cfg.environment != "development":
            logger.warning(
                "round_runner_using_mock",
                environment=cfg.environment,
                hint="Set USE_MOCK_SEARCH=false for real search rounds",
            )
        return MockSearchRoundRunner()
    return SearchRoundRunner.from_settings(http_client, cfg)


def build_search_cache(cfg: Settings) -> SearchCache:
    return SearchCache(cfg.search_cache_dir or None, cfg.search_cache_ttl_seconds)


def build_actor(cfg: Settings, store: JobStore, http_client: httpx.AsyncClient) -> SearchJobActor:
    return SearchJobActor(
        store,
        build_round_runner(cfg, http_client),
        wakeup_delay_seconds=cfg.wakeup_delay_seconds,
        cache=build_search_cache(cfg),
    )
