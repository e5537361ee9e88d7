"""Job persistence behind conditional updates.

Every status change goes through ``transition`` (or ``advance_round``) with
the statuses it expects to find. A write whose expectation no longer holds
returns None instead of clobbering newer state, which is what makes
duplicate and late wake-ups safe without any external lock.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Protocol

import structlog
from pydantic import BaseModel
from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from scout.models.contracts import (
    FollowupQuiz,
    Job,
    JobStatus,
    ResultRow,
    RoundResult,
    SearchRequest,
    TokenUsage,
)
from scout.models.db import RoundArtifactRow, SearchJobRow, SearchResultRow

log = structlog.get_logger("scout.store")

DEFAULT_RESULTS_LIMIT = 20

ProductKey = tuple[str, str, str]


def product_key(row: ResultRow) -> ProductKey:
    return (row.name, row.retailer, row.url)


class JobStore(Protocol):
    async def create_job(
        self,
        request: SearchRequest,
        *,
        target_results: int,
        max_rounds: int,
        cached_result: RoundResult | None = None,
    ) -> Job: ...

    async def get_job(self, job_id: str) -> Job | None: ...

    async def transition(
        self,
        job_id: str,
        from_statuses: tuple[JobStatus, ...] | None,
        to_status: JobStatus,
        **fields: Any,
    ) -> Job | None:
        """Set ``to_status`` (and ``fields``) only if the current status is in
        ``from_statuses``. ``None`` means any status."""
        ...

    async def advance_round(
        self, job_id: str, expected_round: int, usage: TokenUsage, **fields: Any
    ) -> Job | None:
        """Add usage and bump the round counter, only if the job is still
        running at ``expected_round``."""
        ...

    async def record_usage(self, job_id: str, usage: TokenUsage) -> None: ...

    async def insert_results(self, job_id: str, rows: list[ResultRow]) -> int:
        """Insert rows, absorbing (name, retailer, url) duplicates. Returns new-row count."""
        ...

    async def count_results(self, job_id: str) -> int: ...

    async def list_results(self, job_id: str, limit: int = DEFAULT_RESULTS_LIMIT) -> list[ResultRow]: ...

    async def save_artifact(
        self, job_id: str, round_num: int, artifact_type: str, content: list[dict[str, Any]]
    ) -> None: ...


def _sort_key(row: ResultRow) -> tuple[int, int, int]:
    has_score = 0 if row.match_score is not None else 1
    return (has_score, -(row.match_score or 0), -row.confidence)


# === In-memory ===


class InMemoryJobStore:
    """Process-local store for mock mode and tests. One lock serializes writers."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._jobs: dict[str, Job] = {}
        self._results: dict[str, dict[ProductKey, ResultRow]] = {}
        self.artifacts: list[dict[str, Any]] = []

    async def create_job(
        self,
        request: SearchRequest,
        *,
        target_results: int,
        max_rounds: int,
        cached_result: RoundResult | None = None,
    ) -> Job:
        now = datetime.now(timezone.utc)
        job = Job(
            id=str(uuid.uuid4()),
            user_id=request.user_id,
            request=request,
            target_results=target_results,
            max_rounds=max_rounds,
            cached_result=cached_result,
            created_at=now,
            updated_at=now,
        )
        async with self._lock:
            self._jobs[job.id] = job
            self._results[job.id] = {}
        return job

    async def get_job(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    async def transition(
        self,
        job_id: str,
        from_statuses: tuple[JobStatus, ...] | None,
        to_status: JobStatus,
        **fields: Any,
    ) -> Job | None:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            if from_statuses is not None and job.status not in from_statuses:
                log.debug("job_transition_skipped", job_id=job_id, status=job.status, to_status=to_status)
                return None
            updated = job.model_copy(
                update={**fields, "status": to_status, "updated_at": datetime.now(timezone.utc)}
            )
            self._jobs[job_id] = updated
            return updated

    async def advance_round(
        self, job_id: str, expected_round: int, usage: TokenUsage, **fields: Any
    ) -> Job | None:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != "running" or job.round_count != expected_round:
                return None
            updated = job.model_copy(
                update={
                    **fields,
                    "round_count": job.round_count + 1,
                    "input_tokens": job.input_tokens + usage.input_tokens,
                    "output_tokens": job.output_tokens + usage.output_tokens,
                    "api_calls": job.api_calls + usage.api_calls,
                    "updated_at": datetime.now(timezone.utc),
                }
            )
            self._jobs[job_id] = updated
            return updated

    async def record_usage(self, job_id: str, usage: TokenUsage) -> None:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return
            self._jobs[job_id] = job.model_copy(
                update={
                    "input_tokens": job.input_tokens + usage.input_tokens,
                    "output_tokens": job.output_tokens + usage.output_tokens,
                    "api_calls": job.api_calls + usage.api_calls,
                    "updated_at": datetime.now(timezone.utc),
                }
            )

    async def insert_results(self, job_id: str, rows: list[ResultRow]) -> int:
        inserted = 0
        async with self._lock:
            existing = self._results.setdefault(job_id, {})
            for row in rows:
                key = product_key(row)
                if key in existing:
                    continue
                existing[key] = row.model_copy(update={"created_at": datetime.now(timezone.utc)})
                inserted += 1
        return inserted

    async def count_results(self, job_id: str) -> int:
        return len(self._results.get(job_id, {}))

    async def list_results(self, job_id: str, limit: int = DEFAULT_RESULTS_LIMIT) -> list[ResultRow]:
        rows = list(self._results.get(job_id, {}).values())
        return sorted(rows, key=_sort_key)[:limit]

    async def save_artifact(
        self, job_id: str, round_num: int, artifact_type: str, content: list[dict[str, Any]]
    ) -> None:
        self.artifacts.append(
            {
                "job_id": job_id,
                "round_num": round_num,
                "artifact_type": artifact_type,
                "content": content,
            }
        )


# === SQLAlchemy ===


def _column_values(fields: dict[str, Any]) -> dict[str, Any]:
    """Pydantic values become JSON-compatible dicts for JSONB columns."""
    values: dict[str, Any] = {}
    for key, value in fields.items():
        values[key] = value.model_dump(mode="json") if isinstance(value, BaseModel) else value
    return values


def _parse_uuid(job_id: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(job_id)
    except ValueError:
        return None


def _to_job(row: SearchJobRow) -> Job:
    return Job(
        id=str(row.id),
        user_id=row.user_id,
        request=SearchRequest.model_validate(row.request),
        status=row.status,  # type: ignore[arg-type]
        round_count=row.round_count,
        input_tokens=row.input_tokens,
        output_tokens=row.output_tokens,
        api_calls=row.api_calls,
        target_results=row.target_results,
        max_rounds=row.max_rounds,
        followup_quiz=FollowupQuiz.model_validate(row.followup_quiz) if row.followup_quiz else None,
        followup_answers=row.followup_answers,
        error=row.error,
        cached_result=RoundResult.model_validate(row.cached_result) if row.cached_result else None,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_result(row: SearchResultRow) -> ResultRow:
    return ResultRow(
        job_id=str(row.job_id),
        round_num=row.round_num,
        name=row.name,
        retailer=row.retailer,
        url=row.url,
        price_current=row.price_current,
        price_original=row.price_original,
        image_url=row.image_url,
        description=row.description,
        confidence=row.confidence,
        match_score=row.match_score,
        match_reason=row.match_reason,
        rank=row.rank,
        created_at=row.created_at,
    )


class SqlJobStore:
    """Postgres-backed store. Conditional writes are single UPDATE statements."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    @classmethod
    def from_url(cls, database_url: str) -> SqlJobStore:
        engine = create_async_engine(database_url, pool_pre_ping=True)
        return cls(async_sessionmaker(engine, expire_on_commit=False))

    async def create_job(
        self,
        request: SearchRequest,
        *,
        target_results: int,
        max_rounds: int,
        cached_result: RoundResult | None = None,
    ) -> Job:
        row = SearchJobRow(
            user_id=request.user_id,
            request=request.model_dump(mode="json"),
            status="pending",
            round_count=0,
            input_tokens=0,
            output_tokens=0,
            api_calls=0,
            target_results=target_results,
            max_rounds=max_rounds,
            cached_result=cached_result.model_dump(mode="json") if cached_result else None,
        )
        async with self._sessions() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return _to_job(row)

    async def get_job(self, job_id: str) -> Job | None:
        job_uuid = _parse_uuid(job_id)
        if job_uuid is None:
            return None
        async with self._sessions() as session:
            row = await session.get(SearchJobRow, job_uuid)
            return _to_job(row) if row else None

    async def _conditional_update(self, stmt: Any) -> Job | None:
        async with self._sessions() as session:
            result = await session.execute(
                stmt.returning(SearchJobRow).execution_options(synchronize_session=False)
            )
            row = result.scalar_one_or_none()
            await session.commit()
            if row is None:
                log.debug("job_conditional_update_skipped")
                return None
            return _to_job(row)

    async def transition(
        self,
        job_id: str,
        from_statuses: tuple[JobStatus, ...] | None,
        to_status: JobStatus,
        **fields: Any,
    ) -> Job | None:
        job_uuid = _parse_uuid(job_id)
        if job_uuid is None:
            return None
        stmt = (
            update(SearchJobRow)
            .where(SearchJobRow.id == job_uuid)
            .values(status=to_status, updated_at=func.now(), **_column_values(fields))
        )
        if from_statuses is not None:
            stmt = stmt.where(SearchJobRow.status.in_(from_statuses))
        return await self._conditional_update(stmt)

    async def advance_round(
        self, job_id: str, expected_round: int, usage: TokenUsage, **fields: Any
    ) -> Job | None:
        job_uuid = _parse_uuid(job_id)
        if job_uuid is None:
            return None
        stmt = (
            update(SearchJobRow)
            .where(
                SearchJobRow.id == job_uuid,
                SearchJobRow.status == "running",
                SearchJobRow.round_count == expected_round,
            )
            .values(
                round_count=SearchJobRow.round_count + 1,
                input_tokens=SearchJobRow.input_tokens + usage.input_tokens,
                output_tokens=SearchJobRow.output_tokens + usage.output_tokens,
                api_calls=SearchJobRow.api_calls + usage.api_calls,
                updated_at=func.now(),
                **_column_values(fields),
            )
        )
        return await self._conditional_update(stmt)

    async def record_usage(self, job_id: str, usage: TokenUsage) -> None:
        job_uuid = _parse_uuid(job_id)
        if job_uuid is None:
            return
        async with self._sessions() as session:
            await session.execute(
                update(SearchJobRow)
                .where(SearchJobRow.id == job_uuid)
                .values(
                    input_tokens=SearchJobRow.input_tokens + usage.input_tokens,
                    output_tokens=SearchJobRow.output_tokens + usage.output_tokens,
                    api_calls=SearchJobRow.api_calls + usage.api_calls,
                    updated_at=func.now(),
                )
            )
            await session.commit()

    async def insert_results(self, job_id: str, rows: list[ResultRow]) -> int:
        if not rows:
            return 0
        job_uuid = uuid.UUID(job_id)
        values = [
            {
                **row.model_dump(exclude={"job_id", "created_at"}),
                "id": uuid.uuid4(),
                "job_id": job_uuid,
            }
            for row in rows
        ]
        stmt = (
            pg_insert(SearchResultRow)
            .values(values)
            .on_conflict_do_nothing(constraint="uq_search_results_product")
            .returning(SearchResultRow.id)
        )
        async with self._sessions() as session:
            result = await session.execute(stmt)
            inserted = len(result.all())
            await session.commit()
        return inserted

    async def count_results(self, job_id: str) -> int:
        job_uuid = _parse_uuid(job_id)
        if job_uuid is None:
            return 0
        async with self._sessions() as session:
            total = await session.scalar(
                select(func.count()).select_from(SearchResultRow).where(SearchResultRow.job_id == job_uuid)
            )
            return int(total or 0)

    async def list_results(self, job_id: str, limit: int = DEFAULT_RESULTS_LIMIT) -> list[ResultRow]:
        job_uuid = _parse_uuid(job_id)
        if job_uuid is None:
            return []
        stmt = (
            select(SearchResultRow)
            .where(SearchResultRow.job_id == job_uuid)
            .order_by(
                SearchResultRow.match_score.desc().nulls_last(),
                SearchResultRow.confidence.desc(),
                SearchResultRow.created_at,
            )
            .limit(limit)
        )
        async with self._sessions() as session:
            rows = (await session.scalars(stmt)).all()
            return [_to_result(r) for r in rows]

    async def save_artifact(
        self, job_id: str, round_num: int, artifact_type: str, content: list[dict[str, Any]]
    ) -> None:
        async with self._sessions() as session:
            session.add(
                RoundArtifactRow(
                    job_id=uuid.UUID(job_id),
                    round_num=round_num,
                    artifact_type=artifact_type,
                    content=content,
                )
            )
            await session.commit()
