"""Temporal activity wrapping one job wake-up.

The workflow owns the timer; this activity owns the round. Round failures
are recorded on the job by the actor and come back as a normal outcome, so
an activity error here means the store itself was unreachable.
"""

from __future__ import annotations

from temporalio import activity
from temporalio.exceptions import ApplicationError

from scout.jobs.actor import SearchJobActor
from scout.models.contracts import WakeupOutcome


class JobRoundActivities:
    def __init__(self, actor: SearchJobActor | None) -> None:
        self._actor = actor

    @activity.defn(name="process_job_wakeup")
    async def process_job_wakeup(self, job_id: str) -> WakeupOutcome:
        if self._actor is None:
            raise ApplicationError(
                "Job actor is not configured on this worker",
                non_retryable=True,
            )
        activity.logger.info("Processing wake-up for job %s", job_id)
        return await self._actor.wake(job_id)
