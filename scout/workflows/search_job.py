"""SearchJobWorkflow: durable wake-up timer, one instance per search job.

Workflow ID = ``search-job-{job_id}``. The ``wake`` signal (started with
signal-with-start) arms the timer; each expiry runs one
``process_job_wakeup`` activity and re-arms from its outcome. Duplicate
wake-ups are harmless because the actor ignores jobs that are not running.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

from temporalio import workflow
from temporalio.common import RetryPolicy
from temporalio.exceptions import ActivityError

with workflow.unsafe.imports_passed_through():
    from scout.activities.job_rounds import JobRoundActivities
    from scout.models.contracts import WakeupOutcome

_ROUND_RETRY = RetryPolicy(maximum_attempts=2)
_ROUND_TIMEOUT = timedelta(minutes=5)
_IDLE_TIMEOUT = timedelta(hours=48)


def workflow_id_for(job_id: str) -> str:
    return f"search-job-{job_id}"


def next_delay(requested: float | None, signalled: list[float]) -> float:
    """Delay before the next round.

    A re-arm requested by the last round wins over wake signals that arrived
    while it ran, so an early wake cannot skip the pause between rounds.
    """
    if requested is not None:
        return requested
    return min(signalled)


@workflow.defn
class SearchJobWorkflow:
    def __init__(self) -> None:
        self._job_id = ""
        self._pending: list[float] = []
        self._rearm: float | None = None
        self.rounds_dispatched = 0
        self.last_outcome: WakeupOutcome | None = None

    @workflow.run
    async def run(self, job_id: str) -> None:
        self._job_id = job_id
        while True:
            try:
                await workflow.wait_condition(
                    lambda: bool(self._pending) or self._rearm is not None,
                    timeout=_IDLE_TIMEOUT,
                )
            except TimeoutError:
                workflow.logger.info("Search job %s idle, closing timer workflow", job_id)
                return

            delay = next_delay(self._rearm, self._pending)
            self._rearm = None
            self._pending.clear()
            if delay > 0:
                await asyncio.sleep(delay)

            self.rounds_dispatched += 1
            try:
                outcome = await workflow.execute_activity_method(
                    JobRoundActivities.process_job_wakeup,
                    job_id,
                    start_to_close_timeout=_ROUND_TIMEOUT,
                    retry_policy=_ROUND_RETRY,
                )
            except ActivityError as exc:
                workflow.logger.error(
                    "process_job_wakeup failed for job %s: %s",
                    job_id,
                    exc.cause or exc,
                )
                continue

            self.last_outcome = outcome
            if outcome.next_wakeup_seconds is not None:
                self._rearm = outcome.next_wakeup_seconds

    # --- Signals ---

    @workflow.signal
    async def wake(self, delay_seconds: float = 0.0) -> None:
        self._pending.append(max(0.0, delay_seconds))

    # --- Queries ---

    @workflow.query
    def pending_wakeups(self) -> int:
        return len(self._pending) + (self._rearm is not None)

    @workflow.query
    def dispatched(self) -> int:
        return self.rounds_dispatched
