"""Usage accounting for billing consumers.

Counters are accumulated on the job row by the actor; this module only
prices them. A report is ``final`` once the job is completed or failed.
"""

from __future__ import annotations

from dataclasses import dataclass

from scout.config import Settings
from scout.models.contracts import Job, TokenUsage, UsageReport

FINAL_STATUSES = ("completed", "failed")


@dataclass(frozen=True)
class UsagePricing:
    """USD per million tokens."""

    input_per_million: float = 1.0
    output_per_million: float = 5.0

    @classmethod
    def from_settings(cls, cfg: Settings) -> UsagePricing:
        return cls(
            input_per_million=cfg.input_token_price_per_million,
            output_per_million=cfg.output_token_price_per_million,
        )


def estimate_cost_cents(usage: TokenUsage, pricing: UsagePricing) -> float:
    dollars = (
        usage.input_tokens * pricing.input_per_million
        + usage.output_tokens * pricing.output_per_million
    ) / 1_000_000
    return round(dollars * 100, 4)


def usage_report(job: Job, pricing: UsagePricing | None = None) -> UsageReport:
    pricing = pricing or UsagePricing()
    usage = job.usage
    return UsageReport(
        job_id=job.id,
        status=job.status,
        rounds=job.round_count,
        input_tokens=usage.input_tokens,
        output_tokens=usage.output_tokens,
        api_calls=usage.api_calls,
        estimated_cost_cents=estimate_cost_cents(usage, pricing),
        final=job.status in FINAL_STATUSES,
    )
