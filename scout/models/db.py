"""SQLAlchemy ORM models for Scout search jobs.

A job row is mutated only by the actor that owns it, always through
conditional updates on its current status. Result rows are immutable once
written and deduplicated per job on (name, retailer, url).
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class SearchJobRow(Base):
    __tablename__ = "search_jobs"
    __table_args__ = (Index("idx_search_jobs_user_status", "user_id", "status"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    request: Mapped[dict] = mapped_column(JSONB, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    round_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    input_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    output_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    api_calls: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    target_results: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    max_rounds: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    followup_quiz: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    followup_answers: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    cached_result: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    results: Mapped[list["SearchResultRow"]] = relationship(
        back_populates="job", cascade="all, delete"
    )
    artifacts: Mapped[list["RoundArtifactRow"]] = relationship(
        back_populates="job", cascade="all, delete"
    )


class SearchResultRow(Base):
    __tablename__ = "search_results"
    __table_args__ = (
        UniqueConstraint("job_id", "name", "retailer", "url", name="uq_search_results_product"),
        Index("idx_search_results_job_score", "job_id", "match_score"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    job_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("search_jobs.id", ondelete="CASCADE"), nullable=False
    )
    round_num: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    retailer: Mapped[str] = mapped_column(String(100), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    price_current: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    price_original: Mapped[int | None] = mapped_column(Integer, nullable=True)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    confidence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    match_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    match_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    job: Mapped["SearchJobRow"] = relationship(back_populates="results")


class RoundArtifactRow(Base):
    __tablename__ = "round_artifacts"
    __table_args__ = (Index("idx_round_artifacts_job", "job_id", "round_num"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    job_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("search_jobs.id", ondelete="CASCADE"), nullable=False
    )
    round_num: Mapped[int] = mapped_column(Integer, nullable=False)
    artifact_type: Mapped[str] = mapped_column(String(50), nullable=False)
    content: Mapped[list] = mapped_column(JSONB, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    job: Mapped["SearchJobRow"] = relationship(back_populates="artifacts")
