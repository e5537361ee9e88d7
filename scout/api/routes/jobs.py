"""Search job API endpoints: a thin layer over SearchJobService.

The service, its wake-up scheduler and the search cache are wired onto
``app.state`` by the application lifespan (see scout.main).
"""

import structlog
from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from scout.config import settings
from scout.jobs.service import InvalidTransitionError, JobNotFoundError, SearchJobService
from scout.jobs.store import DEFAULT_RESULTS_LIMIT
from scout.models.contracts import (
    ActionResponse,
    ErrorResponse,
    FollowupQuiz,
    Job,
    ResultRow,
    SearchRequest,
    StartJobRequest,
    StartJobResponse,
    SubmitFollowupRequest,
    UsageReport,
)
from scout.utils.search_cache import SearchCache, search_cache_key

logger = structlog.get_logger()

router = APIRouter(tags=["jobs"])

_ERROR_RESPONSES = {404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}}


def _error(status: int, code: str, message: str, *, retryable: bool = False) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content=ErrorResponse(error=code, message=message, retryable=retryable).model_dump(),
    )


def _not_found(exc: JobNotFoundError) -> JSONResponse:
    return _error(404, "job_not_found", str(exc))


def _conflict(exc: InvalidTransitionError) -> JSONResponse:
    return _error(409, "invalid_transition", str(exc))


def _service(request: Request) -> SearchJobService:
    return request.app.state.job_service


def _cache(request: Request) -> SearchCache | None:
    return getattr(request.app.state, "search_cache", None)


# --- Lifecycle ---


@router.post("/jobs", status_code=201, response_model=StartJobResponse)
async def start_job(body: StartJobRequest, request: Request) -> StartJobResponse:
    """Create a search job and schedule its first round."""
    search_request = SearchRequest(
        user_id=body.user_id,
        query=body.query,
        structured=body.structured,
        profile=body.profile,
        provider=body.provider or settings.search_provider,
        target_results=body.target_results,
        max_rounds=body.max_rounds,
    )

    cached = None
    cache = _cache(request)
    if body.use_cache and cache is not None and cache.enabled:
        cached = cache.get(search_cache_key(body.query, body.structured), body.query)

    job = await _service(request).start(search_request, cached=cached)
    logger.info("job_created", job_id=job.id, cached=cached is not None)
    return StartJobResponse(job_id=job.id, status=job.status, cached=cached is not None)


@router.get(
    "/jobs/{job_id}",
    response_model=Job,
    response_model_exclude={"cached_result"},
    responses=_ERROR_RESPONSES,
)
async def get_job(job_id: str, request: Request):
    """Full job row. Clients poll this endpoint."""
    try:
        return await _service(request).status(job_id)
    except JobNotFoundError as exc:
        return _not_found(exc)


@router.get("/jobs/{job_id}/results", response_model=list[ResultRow], responses=_ERROR_RESPONSES)
async def get_results(
    job_id: str,
    request: Request,
    limit: int = Query(default=DEFAULT_RESULTS_LIMIT, ge=1, le=100),
):
    """Accumulated results, best match first."""
    try:
        return await _service(request).results(job_id, limit)
    except JobNotFoundError as exc:
        return _not_found(exc)


# --- Follow-up ---


@router.get("/jobs/{job_id}/followup", response_model=FollowupQuiz, responses=_ERROR_RESPONSES)
async def get_followup(job_id: str, request: Request):
    try:
        return await _service(request).followup(job_id)
    except JobNotFoundError as exc:
        return _not_found(exc)
    except InvalidTransitionError as exc:
        return _conflict(exc)


@router.post("/jobs/{job_id}/followup", response_model=ActionResponse, responses=_ERROR_RESPONSES)
async def submit_followup(job_id: str, body: SubmitFollowupRequest, request: Request):
    """Store answers and run one more round."""
    try:
        job = await _service(request).submit_followup(job_id, body.answers)
    except JobNotFoundError as exc:
        return _not_found(exc)
    except InvalidTransitionError as exc:
        return _conflict(exc)
    return ActionResponse(job_status=job.status)


@router.post("/jobs/{job_id}/resume", response_model=ActionResponse, responses=_ERROR_RESPONSES)
async def resume_job(job_id: str, request: Request):
    try:
        job = await _service(request).resume(job_id)
    except JobNotFoundError as exc:
        return _not_found(exc)
    except InvalidTransitionError as exc:
        return _conflict(exc)
    return ActionResponse(job_status=job.status)


@router.post("/jobs/{job_id}/cancel", response_model=ActionResponse, responses=_ERROR_RESPONSES)
async def cancel_job(job_id: str, request: Request):
    """Idempotent; cancelling a finished job still reports ``cancelled``."""
    try:
        job = await _service(request).cancel(job_id)
    except JobNotFoundError as exc:
        return _not_found(exc)
    return ActionResponse(job_status=job.status)


# --- Usage ---


@router.get("/jobs/{job_id}/usage", response_model=UsageReport, responses=_ERROR_RESPONSES)
async def get_usage(job_id: str, request: Request):
    """Cumulative token and call counters for billing."""
    try:
        return await _service(request).usage(job_id)
    except JobNotFoundError as exc:
        return _not_found(exc)
