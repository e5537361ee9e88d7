"""Temporal worker: hosts the job timer workflow and the round activity.

Run locally with:
    python -m scout.worker

Requires a running Temporal server. With USE_DATABASE=false the worker keeps
its own in-memory job store, which only makes sense for single-process
experiments; production runs both processes against Postgres.
"""

from __future__ import annotations

import asyncio
import sys

import httpx
import structlog
from temporalio.client import Client
from temporalio.contrib.pydantic import pydantic_data_converter
from temporalio.worker import Worker

from scout.activities.job_rounds import JobRoundActivities
from scout.config import settings
from scout.jobs.factory import build_actor, build_job_store
from scout.logging import configure_logging
from scout.workflows.search_job import SearchJobWorkflow

logger = structlog.get_logger()

WORKFLOWS = [SearchJobWorkflow]


def _load_activities(http_client: httpx.AsyncClient) -> list:
    """Bind the round activity to an actor built from settings."""
    actor = build_actor(settings, build_job_store(settings), http_client)
    return [JobRoundActivities(actor).process_job_wakeup]


async def create_temporal_client() -> Client:
    """Create a Temporal client using settings.

    Supports both local Temporal (plain TCP) and Temporal Cloud (TLS + API key).
    """
    if settings.temporal_api_key:
        return await Client.connect(
            target_host=settings.temporal_address,
            namespace=settings.temporal_namespace,
            tls=True,
            api_key=settings.temporal_api_key,
            data_converter=pydantic_data_converter,
        )
    return await Client.connect(
        target_host=settings.temporal_address,
        namespace=settings.temporal_namespace,
        data_converter=pydantic_data_converter,
    )


async def run_worker() -> None:
    """Connect to Temporal and run the worker until interrupted."""
    logger.info(
        "worker_connecting",
        address=settings.temporal_address,
        namespace=settings.temporal_namespace,
        task_queue=settings.temporal_task_queue,
    )

    try:
        client = await create_temporal_client()
    except Exception:
        logger.exception(
            "worker_connection_failed",
            address=settings.temporal_address,
            namespace=settings.temporal_namespace,
        )
        raise

    async with httpx.AsyncClient() as http_client:
        activities = _load_activities(http_client)
        worker = Worker(
            client,
            task_queue=settings.temporal_task_queue,
            workflows=WORKFLOWS,
            activities=activities,
        )

        if not settings.use_database:
            logger.warning(
                "worker_using_memory_store",
                hint="Set USE_DATABASE=true so the API and worker share job state",
            )

        logger.info(
            "worker_started",
            task_queue=settings.temporal_task_queue,
            workflow_count=len(WORKFLOWS),
            activity_count=len(activities),
            use_mock_search=settings.use_mock_search,
        )

        await worker.run()
    logger.info("worker_stopped")


def main() -> None:
    """Entrypoint for `python -m scout.worker`."""
    configure_logging(service="worker")
    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        pass
    except Exception:
        logger.exception("worker_fatal_error")
        sys.exit(1)


if __name__ == "__main__":
    main()
