"""Search job actor: runs exactly one round per wake-up for a running job.

The actor is the only writer of a job's round state. Every write is
conditioned on the status it expects, so a duplicate or late wake-up is a
no-op and a round racing with ``cancel`` can still land its results without
reviving the job.
"""

from __future__ import annotations

import re
from typing import Any

import structlog

from scout.activities.orchestrator import RoundRunner
from scout.jobs.store import JobStore
from scout.models.contracts import (
    FollowupQuestion,
    FollowupQuiz,
    Job,
    ResultRow,
    RoundResult,
    SearchRequest,
    StructuredQuery,
    TokenUsage,
    WakeupOutcome,
)
from scout.utils.search_cache import SearchCache, search_cache_key

log = structlog.get_logger("scout.actor")

DEFAULT_WAKEUP_DELAY_SECONDS = 10.0

BUDGET_OPTIONS = ["$50", "$100", "$200", "$500", "No limit"]
COLOR_OPTIONS = ["Black", "White", "Blue", "Red", "Green", "Other"]
RETAILER_OPTIONS = ["amazon.com", "walmart.com", "target.com", "bestbuy.com", "ebay.com"]

_DOLLARS_RE = re.compile(r"\d+(?:\.\d{1,2})?")


# === Round rows ===


def round_rows(job_id: str, round_num: int, result: RoundResult) -> list[ResultRow]:
    """Curated rows first so they win the (name, retailer, url) slot over raw duplicates."""
    rows = [
        ResultRow(
            job_id=job_id,
            round_num=round_num,
            **item.model_dump(exclude={"notes"}),
        )
        for item in result.curated
    ]
    rows.extend(
        ResultRow(
            job_id=job_id,
            round_num=round_num,
            match_score=item.confidence,
            **item.model_dump(exclude={"notes"}),
        )
        for item in result.raw
    )
    return rows


# === Follow-up ===


def generate_followup_quiz(job: Job, total_results: int) -> FollowupQuiz:
    """Ask about whatever the profile leaves open, plus a free-text must-have."""
    profile = job.request.profile
    answers = job.followup_answers or {}
    questions: list[FollowupQuestion] = []

    if profile.budget_max is None and "budget" not in answers:
        questions.append(
            FollowupQuestion(
                id="budget",
                text="What is your maximum budget?",
                type="range",
                options=BUDGET_OPTIONS,
            )
        )
    if not profile.color_favorites and "color" not in answers:
        questions.append(
            FollowupQuestion(
                id="color",
                text="Which colors do you prefer?",
                type="multiple_choice",
                options=COLOR_OPTIONS,
            )
        )
    if not profile.favorite_retailers and "retailers" not in answers:
        questions.append(
            FollowupQuestion(
                id="retailers",
                text="Any stores you'd like us to focus on?",
                type="multiple_choice",
                options=RETAILER_OPTIONS,
            )
        )
    questions.append(
        FollowupQuestion(
            id="must_have",
            text=(
                f"We found {total_results} of the {job.target_results} results you asked for. "
                "Is there a feature or detail that would help us narrow the search?"
            ),
            type="text",
        )
    )
    return FollowupQuiz(questions=questions)


def _as_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    if isinstance(value, list | tuple):
        return [str(v).strip() for v in value if str(v).strip()]
    return []


def _budget_cents(value: Any) -> int | None:
    if isinstance(value, int | float) and not isinstance(value, bool):
        return round(value * 100)
    match = _DOLLARS_RE.search(str(value).replace(",", ""))
    return round(float(match.group(0)) * 100) if match else None


def apply_followup_answers(request: SearchRequest, answers: dict[str, Any] | None) -> SearchRequest:
    """Fold questionnaire answers into the request used for later rounds.

    The stored request is never modified; unknown answer ids are ignored.
    """
    if not answers:
        return request

    profile_update: dict[str, Any] = {}
    if "budget" in answers:
        profile_update["budget_max"] = _budget_cents(answers["budget"])
    if colors := _as_list(answers.get("color")):
        if "Other" not in colors:
            profile_update["color_favorites"] = colors
    if retailers := _as_list(answers.get("retailers")):
        profile_update["favorite_retailers"] = retailers

    structured = request.structured
    must_have = str(answers.get("must_have") or "").strip()
    if must_have:
        base = structured or StructuredQuery()
        structured = base.model_copy(update={"requirements": [*base.requirements, must_have]})

    return request.model_copy(
        update={
            "profile": request.profile.model_copy(update=profile_update),
            "structured": structured,
        }
    )


# === Actor ===


class SearchJobActor:
    def __init__(
        self,
        store: JobStore,
        runner: RoundRunner,
        *,
        wakeup_delay_seconds: float = DEFAULT_WAKEUP_DELAY_SECONDS,
        cache: SearchCache | None = None,
    ) -> None:
        self._store = store
        self._runner = runner
        self._delay = wakeup_delay_seconds
        self._cache = cache

    async def wake(self, job_id: str) -> WakeupOutcome:
        """Handle one wake-up. Never raises for round failures."""
        job = await self._store.get_job(job_id)
        if job is None or job.status != "running":
            log.info(
                "job_wakeup_skipped",
                job_id=job_id,
                status=job.status if job else None,
            )
            return WakeupOutcome(job_id=job_id, status=job.status if job else None)

        structlog.contextvars.bind_contextvars(job_id=job_id)
        try:
            return await self._run_round(job)
        except Exception as exc:
            log.error("job_round_failed", round=job.round_count + 1, exc_info=True)
            failed = await self._store.transition(
                job_id, ("running",), "failed", error=str(exc) or type(exc).__name__
            )
            return WakeupOutcome(
                job_id=job_id,
                ran_round=True,
                status=failed.status if failed else None,
            )
        finally:
            structlog.contextvars.unbind_contextvars("job_id")

    async def _execute(self, job: Job) -> tuple[RoundResult, dict[str, Any]]:
        # A cached result offered at start replaces the first round at zero cost
        if job.cached_result is not None and job.round_count == 0:
            log.info("job_round_cached", curated=len(job.cached_result.curated))
            seeded = job.cached_result.model_copy(update={"usage": TokenUsage(), "outcome": "cached"})
            return seeded, {"cached_result": None}
        request = apply_followup_answers(job.request, job.followup_answers)
        result = await self._runner(request)
        if self._cache is not None and job.round_count == 0 and result.outcome == "ok":
            key = search_cache_key(job.request.query, job.request.structured)
            self._cache.set(key, result, job.request.query)
        return result, {}

    async def _run_round(self, job: Job) -> WakeupOutcome:
        round_num = job.round_count + 1
        result, extra_fields = await self._execute(job)

        new_results = await self._store.insert_results(job.id, round_rows(job.id, round_num, result))
        await self._store.save_artifact(
            job.id,
            round_num,
            "raw_results",
            [c.model_dump(mode="json") for c in result.raw],
        )

        advanced = await self._store.advance_round(job.id, job.round_count, result.usage, **extra_fields)
        if advanced is None:
            # Cancelled (or advanced by a duplicate) mid-round: keep the spend, schedule nothing
            await self._store.record_usage(job.id, result.usage)
            current = await self._store.get_job(job.id)
            log.info(
                "job_round_superseded",
                round=round_num,
                status=current.status if current else None,
            )
            return WakeupOutcome(
                job_id=job.id,
                ran_round=True,
                status=current.status if current else None,
                new_results=new_results,
            )

        total = await self._store.count_results(job.id)
        log.info(
            "job_round_complete",
            round=round_num,
            outcome=result.outcome,
            new_results=new_results,
            total_results=total,
            target_results=advanced.target_results,
        )

        if total >= advanced.target_results:
            done = await self._store.transition(job.id, ("running",), "completed")
            return WakeupOutcome(
                job_id=job.id,
                ran_round=True,
                status=done.status if done else None,
                new_results=new_results,
            )

        if advanced.round_count >= advanced.max_rounds:
            quiz = generate_followup_quiz(advanced, total)
            paused = await self._store.transition(
                job.id, ("running",), "needs_followup", followup_quiz=quiz
            )
            return WakeupOutcome(
                job_id=job.id,
                ran_round=True,
                status=paused.status if paused else None,
                new_results=new_results,
            )

        return WakeupOutcome(
            job_id=job.id,
            ran_round=True,
            status="running",
            new_results=new_results,
            next_wakeup_seconds=self._delay,
        )
