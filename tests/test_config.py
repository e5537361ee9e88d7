"""Tests for environment-driven settings."""

import pytest
from pydantic import ValidationError

from scout.config import Settings


class TestSearchProvider:
    def test_default_is_brave(self, monkeypatch):
        monkeypatch.delenv("SEARCH_PROVIDER", raising=False)
        assert Settings(_env_file=None).search_provider == "brave"

    def test_tavily_from_env(self, monkeypatch):
        monkeypatch.setenv("SEARCH_PROVIDER", "tavily")
        assert Settings(_env_file=None).search_provider == "tavily"

    def test_unknown_provider_fails_at_load(self, monkeypatch):
        """A typo is reported when settings load, not on the first job."""
        monkeypatch.setenv("SEARCH_PROVIDER", "bravee")
        with pytest.raises(ValidationError, match="search_provider"):
            Settings(_env_file=None)
