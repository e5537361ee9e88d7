"""Scout contract models shared by the API, the job actor and the worker.

Prices are integer minor currency units (cents) everywhere. Anything parsed
from language-model output passes through the extraction sanitizer before it
is allowed into one of these models.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

JobStatus = Literal["pending", "running", "needs_followup", "completed", "failed", "cancelled"]
SearchProviderName = Literal["brave", "tavily"]
RoundOutcome = Literal["ok", "no_candidates", "no_curated_output", "cached"]

TERMINAL_STATUSES: tuple[str, ...] = ("completed", "failed", "cancelled")


# === Request ===


class StructuredQuery(BaseModel):
    category: str | None = None
    price_min: int | None = Field(default=None, ge=0)
    price_max: int | None = Field(default=None, ge=0)
    requirements: list[str] = []
    brands: list[str] = []
    exclude_brands: list[str] = []
    keywords: list[str] = []


class UserProfile(BaseModel):
    sizes: dict[str, str] = {}
    color_favorites: list[str] = []
    color_avoid: list[str] = []
    budget_min: int | None = Field(default=None, ge=0)
    budget_max: int | None = Field(default=None, ge=0)
    favorite_retailers: list[str] = []
    excluded_retailers: list[str] = []
    style_notes: str | None = None


class SearchRequest(BaseModel):
    """Immutable per job. Passed by value into every round."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    query: str = Field(min_length=1, max_length=1000)
    structured: StructuredQuery | None = None
    profile: UserProfile = UserProfile()
    provider: SearchProviderName = "brave"
    target_results: int | None = Field(default=None, ge=1, le=100)
    max_rounds: int | None = Field(default=None, ge=1, le=20)


# === Products ===


class CandidateProduct(BaseModel):
    name: str = Field(min_length=1, max_length=500)
    price_current: int = Field(ge=0, default=0)
    price_original: int | None = Field(default=None, ge=0)
    retailer: str = Field(max_length=100)
    url: str
    image_url: str | None = None
    description: str | None = Field(default=None, max_length=2000)
    confidence: int = Field(ge=0, le=100)
    notes: str | None = Field(default=None, max_length=500)


class CuratedProduct(CandidateProduct):
    rank: int = Field(ge=1)
    match_score: int = Field(ge=0, le=100)
    match_reason: str = Field(default="", max_length=500)


# === Usage ===


class TokenUsage(BaseModel):
    input_tokens: int = Field(ge=0, default=0)
    output_tokens: int = Field(ge=0, default=0)
    api_calls: int = Field(ge=0, default=0)

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            api_calls=self.api_calls + other.api_calls,
        )


class UsageReport(BaseModel):
    job_id: str
    status: JobStatus
    rounds: int
    input_tokens: int
    output_tokens: int
    api_calls: int
    estimated_cost_cents: float = Field(ge=0)
    final: bool


# === Round ===


class RoundResult(BaseModel):
    raw: list[CandidateProduct] = []
    curated: list[CuratedProduct] = []
    usage: TokenUsage = TokenUsage()
    outcome: RoundOutcome = "ok"


# === Follow-up ===


class FollowupQuestion(BaseModel):
    id: str
    text: str
    type: Literal["range", "multiple_choice", "text"]
    options: list[str] = []


class FollowupQuiz(BaseModel):
    questions: list[FollowupQuestion] = Field(min_length=1)


# === Job ===


class Job(BaseModel):
    id: str
    user_id: str
    request: SearchRequest
    status: JobStatus = "pending"
    round_count: int = Field(ge=0, default=0)
    input_tokens: int = Field(ge=0, default=0)
    output_tokens: int = Field(ge=0, default=0)
    api_calls: int = Field(ge=0, default=0)
    target_results: int = Field(ge=1, default=5)
    max_rounds: int = Field(ge=1, default=3)
    followup_quiz: FollowupQuiz | None = None
    followup_answers: dict[str, Any] | None = None
    error: str | None = None
    cached_result: RoundResult | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def usage(self) -> TokenUsage:
        return TokenUsage(
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            api_calls=self.api_calls,
        )


class ResultRow(BaseModel):
    job_id: str
    round_num: int
    name: str
    retailer: str
    url: str
    price_current: int = 0
    price_original: int | None = None
    image_url: str | None = None
    description: str | None = None
    confidence: int = 0
    match_score: int | None = None
    match_reason: str | None = None
    rank: int | None = None
    created_at: datetime | None = None


class WakeupOutcome(BaseModel):
    """What one wake-up did. ``next_wakeup_seconds`` is set only when the
    actor wants exactly one more wake-up."""

    job_id: str
    ran_round: bool = False
    status: JobStatus | None = None
    new_results: int = 0
    next_wakeup_seconds: float | None = None


# === API Request/Response Models ===


class StartJobRequest(BaseModel):
    user_id: str
    query: str = Field(min_length=1, max_length=1000)
    structured: StructuredQuery | None = None
    profile: UserProfile = UserProfile()
    provider: SearchProviderName | None = None
    target_results: int | None = Field(default=None, ge=1, le=100)
    max_rounds: int | None = Field(default=None, ge=1, le=20)
    use_cache: bool = True


class StartJobResponse(BaseModel):
    job_id: str
    status: JobStatus
    cached: bool = False


class SubmitFollowupRequest(BaseModel):
    answers: dict[str, Any] = {}


class ActionResponse(BaseModel):
    status: Literal["ok"] = "ok"
    job_status: JobStatus


class ErrorResponse(BaseModel):
    error: str
    message: str
    retryable: bool
    detail: str | None = None
