"""Curation pass: a second model call that picks and ranks the top N candidates.

The weighting (match 40%, value 30%, preference 20%, diversity 10%) lives in
the prompt only; nothing here re-scores results. Whatever the model returns
is re-sanitized, so a curated item can never carry a URL that extraction
would have rejected.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import structlog

from scout.activities.extraction import (
    build_profile_context,
    parse_json_array,
    parse_json_objects,
    sanitize_candidate,
)
from scout.models.contracts import (
    CandidateProduct,
    CuratedProduct,
    SearchRequest,
    TokenUsage,
)
from scout.utils.llm import LLMClient
from scout.utils.prompt_versioning import load_versioned_prompt

log = structlog.get_logger("scout.curation")

CURATED_COUNT = 5
MAX_REASON_LENGTH = 500


@dataclass
class CurationResult:
    items: list[CuratedProduct] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)
    no_output: bool = False


def _candidates_payload(candidates: list[CandidateProduct]) -> str:
    return json.dumps(
        [c.model_dump(exclude_none=True) for c in candidates],
        indent=2,
    )


def _match_score(value: Any, fallback: int) -> int:
    if value is None or isinstance(value, bool):
        return fallback
    try:
        return max(0, min(100, round(float(value))))
    except (TypeError, ValueError, OverflowError):
        return fallback


def parse_curated(text: str, count: int = CURATED_COUNT) -> list[CuratedProduct]:
    """Parse curator output into at most ``count`` ranked items.

    Items that fail sanitization are skipped before the cut, so a bad entry
    does not cost a slot. The survivors are stable-sorted by match_score and
    ranked 1..k.
    """
    raw_items = parse_json_array(text) or parse_json_objects(text)

    kept: list[tuple[CandidateProduct, int, str]] = []
    for raw in raw_items:
        candidate = sanitize_candidate(raw)
        if candidate is None:
            continue
        score = _match_score(raw.get("match_score"), candidate.confidence)
        reason = str(raw.get("match_reason") or "")[:MAX_REASON_LENGTH]
        kept.append((candidate, score, reason))
        if len(kept) == count:
            break

    kept.sort(key=lambda item: item[1], reverse=True)
    return [
        CuratedProduct(**candidate.model_dump(), rank=rank, match_score=score, match_reason=reason)
        for rank, (candidate, score, reason) in enumerate(kept, start=1)
    ]


async def curate_products(
    llm: LLMClient,
    candidates: list[CandidateProduct],
    request: SearchRequest,
    *,
    count: int = CURATED_COUNT,
    max_tokens: int = 2000,
) -> CurationResult:
    """Rank candidates into a top-``count`` list. Empty input skips the call."""
    if not candidates:
        return CurationResult()

    system = load_versioned_prompt("product_curation").replace("{count}", str(count))
    user = (
        f"{build_profile_context(request.profile, request.structured)}\n\n"
        f"## Search Request\n{request.query}\n\n"
        f"## Products ({len(candidates)} found)\n{_candidates_payload(candidates)}\n\n"
        f"Select the best {count} and return them as a JSON array."
    )
    response = await llm.complete(system, user, max_tokens)
    usage = TokenUsage(
        input_tokens=response.input_tokens,
        output_tokens=response.output_tokens,
        api_calls=1,
    )

    items = parse_curated(response.text, count)
    if not items:
        log.warning("curation_no_output", candidates=len(candidates))
        return CurationResult(usage=usage, no_output=True)

    log.info("curation_complete", candidates=len(candidates), curated=len(items))
    return CurationResult(items=items, usage=usage)
