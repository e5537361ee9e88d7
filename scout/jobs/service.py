"""Control surface for search jobs: start, inspect, follow up, resume, cancel.

The service only creates jobs and flips statuses callers are allowed to
flip. Everything round-related belongs to the actor.
"""

from __future__ import annotations

from typing import Any

import structlog

from scout.jobs.scheduler import WakeupScheduler
from scout.jobs.store import DEFAULT_RESULTS_LIMIT, JobStore
from scout.models.contracts import (
    FollowupQuiz,
    Job,
    JobStatus,
    ResultRow,
    RoundResult,
    SearchRequest,
    UsageReport,
)
from scout.utils.usage import UsagePricing, usage_report

log = structlog.get_logger("scout.jobs")


class JobNotFoundError(Exception):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class InvalidTransitionError(Exception):
    def __init__(self, job_id: str, status: JobStatus, action: str) -> None:
        super().__init__(f"Cannot {action} job {job_id} in status '{status}'")
        self.job_id = job_id
        self.status = status
        self.action = action


class SearchJobService:
    def __init__(
        self,
        store: JobStore,
        scheduler: WakeupScheduler,
        *,
        default_target_results: int = 5,
        default_max_rounds: int = 3,
        pricing: UsagePricing | None = None,
    ) -> None:
        self._store = store
        self._scheduler = scheduler
        self._default_target = default_target_results
        self._default_max_rounds = default_max_rounds
        self._pricing = pricing or UsagePricing()

    async def _require(self, job_id: str) -> Job:
        job = await self._store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def start(self, request: SearchRequest, cached: RoundResult | None = None) -> Job:
        """Create the job and schedule an immediate first wake-up.

        ``cached`` replaces the first round at zero token and call cost.
        """
        job = await self._store.create_job(
            request,
            target_results=request.target_results or self._default_target,
            max_rounds=request.max_rounds or self._default_max_rounds,
            cached_result=cached,
        )
        running = await self._store.transition(job.id, ("pending",), "running")
        if running is None:
            raise InvalidTransitionError(job.id, job.status, "start")
        await self._scheduler.schedule(job.id, 0.0)
        log.info(
            "job_started",
            job_id=job.id,
            user_id=request.user_id,
            provider=request.provider,
            cached=cached is not None,
        )
        return running

    async def status(self, job_id: str) -> Job:
        return await self._require(job_id)

    async def results(self, job_id: str, limit: int = DEFAULT_RESULTS_LIMIT) -> list[ResultRow]:
        await self._require(job_id)
        return await self._store.list_results(job_id, limit)

    async def followup(self, job_id: str) -> FollowupQuiz:
        job = await self._require(job_id)
        if job.status != "needs_followup" or job.followup_quiz is None:
            raise InvalidTransitionError(job_id, job.status, "read follow-up for")
        return job.followup_quiz

    async def submit_followup(self, job_id: str, answers: dict[str, Any]) -> Job:
        """Store answers (merged over earlier ones) and grant one more round."""
        job = await self._require(job_id)
        merged = {**(job.followup_answers or {}), **answers}
        return await self._reopen(job, "submit follow-up for", followup_answers=merged)

    async def resume(self, job_id: str) -> Job:
        """Grant one more round without new answers."""
        job = await self._require(job_id)
        return await self._reopen(job, "resume")

    async def _reopen(self, job: Job, action: str, **fields: Any) -> Job:
        running = await self._store.transition(
            job.id, ("needs_followup",), "running", followup_quiz=None, **fields
        )
        if running is None:
            current = await self._require(job.id)
            raise InvalidTransitionError(job.id, current.status, action)
        await self._scheduler.schedule(job.id, 0.0)
        log.info("job_reopened", job_id=job.id, action=action, round=running.round_count)
        return running

    async def cancel(self, job_id: str) -> Job:
        """Unconditional and idempotent. An in-flight round still lands its results."""
        await self._require(job_id)
        cancelled = await self._store.transition(job_id, None, "cancelled")
        if cancelled is None:
            raise JobNotFoundError(job_id)
        log.info("job_cancelled", job_id=job_id)
        return cancelled

    async def usage(self, job_id: str) -> UsageReport:
        return usage_report(await self._require(job_id), self._pricing)
