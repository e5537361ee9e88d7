"""Tests for the job control surface and the in-process wake-up loop."""

import asyncio

import pytest

from scout.activities.mock_stubs import MockSearchRoundRunner
from scout.jobs.actor import SearchJobActor
from scout.jobs.scheduler import AsyncioWakeupScheduler
from scout.jobs.service import InvalidTransitionError, JobNotFoundError, SearchJobService
from scout.jobs.store import InMemoryJobStore
from scout.models.contracts import (
    FollowupQuestion,
    FollowupQuiz,
    RoundResult,
    SearchRequest,
)
from tests.fakes import RecordingScheduler

QUIZ = FollowupQuiz(questions=[FollowupQuestion(id="must_have", text="Anything else?", type="text")])


@pytest.fixture
def store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()


@pytest.fixture
def service(store, scheduler) -> SearchJobService:
    return SearchJobService(store, scheduler, default_target_results=5, default_max_rounds=3)


async def _paused(store, service, search_request):
    job = await service.start(search_request)
    await store.transition(job.id, ("running",), "needs_followup", followup_quiz=QUIZ)
    return job


class TestStart:
    @pytest.mark.asyncio
    async def test_running_and_scheduled_immediately(self, service, scheduler, search_request):
        job = await service.start(search_request)
        assert job.status == "running"
        assert (job.target_results, job.max_rounds) == (5, 3)
        assert scheduler.calls == [(job.id, 0.0)]

    @pytest.mark.asyncio
    async def test_request_overrides_defaults(self, service):
        request = SearchRequest(user_id="u", query="tent", target_results=10, max_rounds=6)
        job = await service.start(request)
        assert (job.target_results, job.max_rounds) == (10, 6)

    @pytest.mark.asyncio
    async def test_cached_seed_stored(self, service, store, search_request):
        job = await service.start(search_request, cached=RoundResult())
        assert (await store.get_job(job.id)).cached_result == RoundResult()


class TestQueries:
    @pytest.mark.asyncio
    async def test_unknown_job(self, service):
        for call in (service.status, service.results, service.followup, service.resume, service.cancel, service.usage):
            with pytest.raises(JobNotFoundError):
                await call("missing")
        with pytest.raises(JobNotFoundError):
            await service.submit_followup("missing", {})

    @pytest.mark.asyncio
    async def test_usage_report(self, service, store, search_request):
        job = await service.start(search_request)
        report = await service.usage(job.id)
        assert report.job_id == job.id
        assert report.rounds == 0
        assert not report.final


class TestFollowup:
    @pytest.mark.asyncio
    async def test_followup_only_when_paused(self, service, search_request):
        job = await service.start(search_request)
        with pytest.raises(InvalidTransitionError) as exc_info:
            await service.followup(job.id)
        assert exc_info.value.status == "running"

    @pytest.mark.asyncio
    async def test_followup_returns_quiz(self, service, store, search_request):
        job = await _paused(store, service, search_request)
        assert await service.followup(job.id) == QUIZ

    @pytest.mark.asyncio
    async def test_submit_reopens_and_schedules(self, service, store, scheduler, search_request):
        job = await _paused(store, service, search_request)
        scheduler.calls.clear()

        reopened = await service.submit_followup(job.id, {"budget": "$100"})

        assert reopened.status == "running"
        assert reopened.followup_quiz is None
        assert reopened.followup_answers == {"budget": "$100"}
        assert scheduler.calls == [(job.id, 0.0)]

    @pytest.mark.asyncio
    async def test_answers_merge(self, service, store, search_request):
        job = await _paused(store, service, search_request)
        await service.submit_followup(job.id, {"budget": "$100", "color": "Black"})
        await store.transition(job.id, ("running",), "needs_followup", followup_quiz=QUIZ)

        reopened = await service.submit_followup(job.id, {"budget": "$200"})

        assert reopened.followup_answers == {"budget": "$200", "color": "Black"}

    @pytest.mark.asyncio
    async def test_submit_requires_paused(self, service, scheduler, search_request):
        job = await service.start(search_request)
        scheduler.calls.clear()
        with pytest.raises(InvalidTransitionError, match="in status 'running'"):
            await service.submit_followup(job.id, {"budget": "$100"})
        assert scheduler.calls == []

    @pytest.mark.asyncio
    async def test_resume(self, service, store, scheduler, search_request):
        job = await _paused(store, service, search_request)
        resumed = await service.resume(job.id)
        assert resumed.status == "running"
        assert resumed.followup_answers is None
        assert scheduler.calls[-1] == (job.id, 0.0)

    @pytest.mark.asyncio
    async def test_resume_terminal_rejected(self, service, search_request):
        job = await service.start(search_request)
        await service.cancel(job.id)
        with pytest.raises(InvalidTransitionError) as exc_info:
            await service.resume(job.id)
        assert exc_info.value.status == "cancelled"


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, service, search_request):
        job = await service.start(search_request)
        first = await service.cancel(job.id)
        second = await service.cancel(job.id)
        assert first.status == second.status == "cancelled"

    @pytest.mark.asyncio
    async def test_cancel_from_any_status(self, service, store, search_request):
        job = await service.start(search_request)
        await store.transition(job.id, None, "completed")
        assert (await service.cancel(job.id)).status == "cancelled"


class TestInProcessLoop:
    """The asyncio scheduler drives the actor until the job settles."""

    @pytest.mark.asyncio
    async def test_mock_job_runs_to_completion(self, store, search_request):
        actor = SearchJobActor(store, MockSearchRoundRunner(products_per_round=3), wakeup_delay_seconds=0)
        scheduler = AsyncioWakeupScheduler(actor)
        service = SearchJobService(store, scheduler, default_target_results=5, default_max_rounds=3)

        job = await service.start(search_request)
        await scheduler.drain()

        final = await service.status(job.id)
        assert final.status == "completed"
        assert final.round_count == 2
        assert final.usage.api_calls == 6
        results = await service.results(job.id)
        assert len(results) == 6
        assert results[0].rank == 1
        assert scheduler.pending == 0

    @pytest.mark.asyncio
    async def test_followup_then_resume(self, store):
        actor = SearchJobActor(store, MockSearchRoundRunner(products_per_round=1), wakeup_delay_seconds=0)
        scheduler = AsyncioWakeupScheduler(actor)
        service = SearchJobService(store, scheduler, default_target_results=5, default_max_rounds=2)

        job = await service.start(SearchRequest(user_id="u", query="desk lamp"))
        await scheduler.drain()
        paused = await service.status(job.id)
        assert paused.status == "needs_followup"
        assert paused.round_count == 2

        quiz = await service.followup(job.id)
        assert quiz.questions[-1].id == "must_have"

        await service.submit_followup(job.id, {"must_have": "dimmable"})
        await scheduler.drain()

        after = await service.status(job.id)
        # one more round granted, still short of the target
        assert after.round_count == 3
        assert after.status == "needs_followup"

    @pytest.mark.asyncio
    async def test_cancelled_job_is_not_rescheduled(self, store, search_request):
        actor = SearchJobActor(store, MockSearchRoundRunner(products_per_round=1), wakeup_delay_seconds=60)
        scheduler = AsyncioWakeupScheduler(actor)
        service = SearchJobService(store, scheduler)

        job = await service.start(search_request)
        # let the first round run; the next wake-up is 60s out
        while (await service.status(job.id)).round_count == 0:
            await asyncio.sleep(0)
        await service.cancel(job.id)
        await scheduler.aclose()

        final = await service.status(job.id)
        assert final.status == "cancelled"
        assert final.round_count == 1
        assert scheduler.pending == 0