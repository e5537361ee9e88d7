"""Prompt versioning: load the active system prompt for each model pass.

``prompts/prompt_versions.json`` names the active (and previous) version of
each prompt; the text lives in ``{name}_{version}.txt`` next to it. Changelog
lines such as ``[v2: ...]`` are stripped before the text reaches the model.
"""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path

import structlog

log = structlog.get_logger("scout.prompts")

PROMPTS_DIR = Path(__file__).parent.parent / "prompts"
VERSIONS_FILE = PROMPTS_DIR / "prompt_versions.json"


def _load_versions_manifest() -> dict[str, dict[str, str]]:
    if not VERSIONS_FILE.exists():
        return {}
    try:
        return json.loads(VERSIONS_FILE.read_text())  # type: ignore[no-any-return]
    except (json.JSONDecodeError, OSError) as e:
        log.error("prompt_manifest_corrupted", error=str(e))
        return {}


def get_active_version(prompt_name: str) -> str:
    """Active version string for a prompt (e.g. 'v2'); 'v1' when unlisted."""
    return _load_versions_manifest().get(prompt_name, {}).get("active", "v1")


def get_previous_version(prompt_name: str) -> str | None:
    return _load_versions_manifest().get(prompt_name, {}).get("previous")


def strip_changelog_lines(text: str) -> str:
    lines = text.split("\n")
    filtered = [ln for ln in lines if not (ln.startswith("[v") and ln.endswith("]"))]
    return "\n".join(filtered).strip("\n")


@lru_cache(maxsize=16)
def load_versioned_prompt(prompt_name: str, version: str | None = None) -> str:
    """Load a prompt at the given (or active) version, changelog stripped.

    Raises:
        FileNotFoundError: If no ``{prompt_name}_{version}.txt`` exists.
    """
    if version is None:
        version = get_active_version(prompt_name)

    path = PROMPTS_DIR / f"{prompt_name}_{version}.txt"
    if not path.exists():
        raise FileNotFoundError(f"No prompt file found: {path}")

    log.debug("prompt_loaded", prompt=prompt_name, version=version)
    return strip_changelog_lines(path.read_text())


def list_versions(prompt_name: str) -> list[str]:
    return [
        path.stem.replace(f"{prompt_name}_", "")
        for path in sorted(PROMPTS_DIR.glob(f"{prompt_name}_v*.txt"))
    ]
