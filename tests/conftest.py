"""Shared fixtures for the search pipeline and job tests."""

from __future__ import annotations

import pytest

from scout.activities.search_providers import SearchHit
from scout.models.contracts import SearchRequest, UserProfile


@pytest.fixture
def search_request() -> SearchRequest:
    return SearchRequest(
        user_id="user-1",
        query="wireless earbuds",
        profile=UserProfile(budget_max=5000, color_favorites=["black"]),
    )


@pytest.fixture
def three_hits() -> list[SearchHit]:
    return [
        SearchHit(
            title=f"Earbuds {i}",
            url=f"https://shop{i}.example.com/earbuds-{i}",
            snippet=f"Wireless earbuds model {i} for $3{i}.99",
        )
        for i in range(3)
    ]
