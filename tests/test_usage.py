"""Tests for usage pricing and reports."""

from datetime import datetime, timezone

import pytest

from scout.config import Settings
from scout.models.contracts import Job, SearchRequest, TokenUsage
from scout.utils.usage import UsagePricing, estimate_cost_cents, usage_report


def _job(status: str = "running", **counters) -> Job:
    now = datetime.now(timezone.utc)
    return Job(
        id="job-1",
        user_id="u",
        request=SearchRequest(user_id="u", query="tent"),
        status=status,
        created_at=now,
        updated_at=now,
        **counters,
    )


class TestEstimateCost:
    def test_default_pricing(self):
        usage = TokenUsage(input_tokens=2_000_000, output_tokens=100_000)
        # $2.00 input + $0.50 output
        assert estimate_cost_cents(usage, UsagePricing()) == 250.0

    def test_zero(self):
        assert estimate_cost_cents(TokenUsage(), UsagePricing()) == 0.0

    def test_small_amounts_keep_precision(self):
        usage = TokenUsage(input_tokens=1234, output_tokens=567)
        assert estimate_cost_cents(usage, UsagePricing()) == pytest.approx(0.4069, abs=1e-4)

    def test_pricing_from_settings(self):
        pricing = UsagePricing.from_settings(
            Settings(input_token_price_per_million=3.0, output_token_price_per_million=15.0)
        )
        assert pricing == UsagePricing(input_per_million=3.0, output_per_million=15.0)


class TestUsageReport:
    def test_counters_copied(self):
        report = usage_report(
            _job(round_count=2, input_tokens=10, output_tokens=20, api_calls=30)
        )
        assert (report.rounds, report.input_tokens, report.output_tokens, report.api_calls) == (2, 10, 20, 30)
        assert report.job_id == "job-1"

    @pytest.mark.parametrize(
        "status, final",
        [
            ("running", False),
            ("needs_followup", False),
            ("cancelled", False),
            ("completed", True),
            ("failed", True),
        ],
    )
    def test_final_flag(self, status, final):
        assert usage_report(_job(status)).final is final
