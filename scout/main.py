import uuid
from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from scout.api.routes import health, jobs
from scout.config import settings
from scout.jobs.factory import build_actor, build_job_store, build_search_cache
from scout.jobs.scheduler import AsyncioWakeupScheduler, TemporalWakeupScheduler, WakeupScheduler
from scout.jobs.service import SearchJobService
from scout.logging import configure_logging
from scout.utils.usage import UsagePricing

configure_logging()

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire store, wake-up scheduler and service onto app.state.

    With USE_TEMPORAL the worker process runs the rounds; otherwise they run
    on in-process timers inside the API.
    """
    http_client = httpx.AsyncClient()
    store = build_job_store(settings)
    scheduler: WakeupScheduler
    if settings.use_temporal:
        from scout.worker import create_temporal_client

        client = await create_temporal_client()
        app.state.temporal_client = client
        scheduler = TemporalWakeupScheduler(client, settings.temporal_task_queue)
    else:
        scheduler = AsyncioWakeupScheduler(build_actor(settings, store, http_client))

    app.state.job_service = SearchJobService(
        store,
        scheduler,
        default_target_results=settings.default_target_results,
        default_max_rounds=settings.default_max_rounds,
        pricing=UsagePricing.from_settings(settings),
    )
    app.state.search_cache = build_search_cache(settings)
    logger.info(
        "api_started",
        use_temporal=settings.use_temporal,
        use_database=settings.use_database,
        use_mock_search=settings.use_mock_search,
    )
    try:
        yield
    finally:
        if isinstance(scheduler, AsyncioWakeupScheduler):
            await scheduler.aclose()
        await http_client.aclose()


app = FastAPI(
    title="Scout API",
    version="0.1.0",
    docs_url="/docs",
    redoc_url=None,
    lifespan=lifespan,
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Attach a unique request ID to every request for log correlation.

    Sets the ID in structlog context vars (appears in all log entries for the
    request) and returns it in the X-Request-ID response header.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Return ErrorResponse JSON for Pydantic validation errors.

    FastAPI's default 422 returns {"detail": [...]}, which doesn't match
    the single ErrorResponse shape every other error uses.
    """
    messages = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"])
        messages.append(f"{loc}: {err['msg']}")
    response = JSONResponse(
        status_code=422,
        content={
            "error": "validation_error",
            "message": "; ".join(messages),
            "retryable": False,
        },
    )
    response.headers["X-Request-ID"] = getattr(
        request.state, "request_id", request.headers.get("X-Request-ID", "")
    )
    return response


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return consistent ErrorResponse JSON for unhandled exceptions."""
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        exc_info=exc,
    )
    response = JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "message": "An unexpected error occurred",
            "retryable": True,
        },
    )
    response.headers["X-Request-ID"] = getattr(
        request.state, "request_id", request.headers.get("X-Request-ID", "")
    )
    return response


app.include_router(health.router)
app.include_router(jobs.router, prefix="/api/v1")
