"""Tests for prompt version loading."""

import json

import pytest

from scout.utils import prompt_versioning
from scout.utils.prompt_versioning import (
    get_active_version,
    get_previous_version,
    list_versions,
    load_versioned_prompt,
    strip_changelog_lines,
)


class TestShippedPrompts:
    def test_extraction_active_is_v2(self):
        assert get_active_version("product_extraction") == "v2"
        assert get_previous_version("product_extraction") == "v1"

    def test_curation_has_no_previous(self):
        assert get_active_version("product_curation") == "v1"
        assert get_previous_version("product_curation") is None

    def test_unlisted_prompt_defaults_to_v1(self):
        assert get_active_version("nonexistent") == "v1"

    def test_loaded_text_has_no_changelog(self):
        text = load_versioned_prompt("product_extraction")
        assert not text.startswith("[v")
        assert "Scout" in text

    def test_explicit_version(self):
        assert load_versioned_prompt("product_extraction", "v1") != load_versioned_prompt(
            "product_extraction", "v2"
        )

    def test_missing_prompt_raises(self):
        with pytest.raises(FileNotFoundError):
            load_versioned_prompt("product_extraction", "v99")

    def test_list_versions(self):
        assert list_versions("product_extraction") == ["v1", "v2"]
        assert list_versions("product_curation") == ["v1"]


class TestStripChangelog:
    def test_strips_only_bracketed_version_lines(self):
        text = "[v3: tweak]\nFind products.\n[not a changelog\n[v3: end]"
        assert strip_changelog_lines(text) == "Find products.\n[not a changelog"


class TestManifest:
    def test_corrupt_manifest_falls_back(self, tmp_path, monkeypatch):
        bad = tmp_path / "prompt_versions.json"
        bad.write_text("{oops")
        monkeypatch.setattr(prompt_versioning, "VERSIONS_FILE", bad)
        assert get_active_version("product_extraction") == "v1"

    def test_missing_manifest_falls_back(self, tmp_path, monkeypatch):
        monkeypatch.setattr(prompt_versioning, "VERSIONS_FILE", tmp_path / "absent.json")
        assert get_previous_version("product_extraction") is None

    def test_custom_manifest(self, tmp_path, monkeypatch):
        manifest = tmp_path / "prompt_versions.json"
        manifest.write_text(json.dumps({"product_curation": {"active": "v7"}}))
        monkeypatch.setattr(prompt_versioning, "VERSIONS_FILE", manifest)
        assert get_active_version("product_curation") == "v7"
