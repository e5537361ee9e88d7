"""Mock round runner for local development without search or model API keys.

Returns canned products built from the query so the job state machine, the
API and the Temporal workflow can be exercised end-to-end. Each call yields
a fresh batch, so a default job completes after two rounds.
"""

import itertools

from scout.models.contracts import (
    CandidateProduct,
    CuratedProduct,
    RoundResult,
    SearchRequest,
    TokenUsage,
)

_MOCK_RETAILERS = ("amazon.com", "walmart.com", "target.com")


class MockSearchRoundRunner:
    def __init__(self, products_per_round: int = 3) -> None:
        self._per_round = products_per_round
        self._counter = itertools.count(1)

    async def __call__(self, request: SearchRequest) -> RoundResult:
        batch = next(self._counter)
        raw = [
            CandidateProduct(
                name=f"Mock {request.query[:60]} #{batch}-{i}",
                price_current=2999 + 500 * i,
                retailer=retailer,
                url=f"https://www.{retailer}/mock/{batch}-{i}",
                description="Mock product",
                confidence=90 - 5 * i,
            )
            for i, retailer in zip(range(self._per_round), itertools.cycle(_MOCK_RETAILERS))
        ]
        curated = [
            CuratedProduct(
                **c.model_dump(),
                rank=rank,
                match_score=c.confidence,
                match_reason="Mock match",
            )
            for rank, c in enumerate(raw, start=1)
        ]
        return RoundResult(
            raw=raw,
            curated=curated,
            usage=TokenUsage(input_tokens=1200, output_tokens=400, api_calls=3),
        )
