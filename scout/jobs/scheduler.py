"""Wake-up primitives: "run this job's actor again after N seconds".

Both implementations deliver at least once and re-arm from the actor's
outcome, so there is never more than one future wake-up per round.
"""

from __future__ import annotations

import asyncio
from typing import Protocol

import structlog
from temporalio.client import Client

from scout.jobs.actor import SearchJobActor
from scout.workflows.search_job import SearchJobWorkflow, workflow_id_for

log = structlog.get_logger("scout.scheduler")


class WakeupScheduler(Protocol):
    async def schedule(self, job_id: str, delay_seconds: float = 0.0) -> None: ...


class AsyncioWakeupScheduler:
    """In-process timers for local development and tests.

    Timers do not survive a restart; use the Temporal scheduler when jobs
    must outlive the API process.
    """

    def __init__(self, actor: SearchJobActor) -> None:
        self._actor = actor
        self._tasks: set[asyncio.Task[None]] = set()

    async def schedule(self, job_id: str, delay_seconds: float = 0.0) -> None:
        task = asyncio.create_task(self._fire(job_id, max(0.0, delay_seconds)))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        log.debug("wakeup_scheduled", job_id=job_id, delay_seconds=delay_seconds)

    async def _fire(self, job_id: str, delay_seconds: float) -> None:
        if delay_seconds:
            await asyncio.sleep(delay_seconds)
        try:
            outcome = await self._actor.wake(job_id)
        except Exception:
            log.exception("wakeup_failed", job_id=job_id)
            return
        if outcome.next_wakeup_seconds is not None:
            await self.schedule(job_id, outcome.next_wakeup_seconds)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until no timers remain (re-armed timers included)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._tasks.clear()


class TemporalWakeupScheduler:
    """Signal-with-start of the job's timer workflow."""

    def __init__(self, client: Client, task_queue: str) -> None:
        self._client = client
        self._task_queue = task_queue

    async def schedule(self, job_id: str, delay_seconds: float = 0.0) -> None:
        await self._client.start_workflow(
            SearchJobWorkflow.run,
            job_id,
            id=workflow_id_for(job_id),
            task_queue=self._task_queue,
            start_signal="wake",
            start_signal_args=[max(0.0, delay_seconds)],
        )
        log.info("wakeup_signalled", job_id=job_id, delay_seconds=delay_seconds)
