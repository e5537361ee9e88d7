"""Disk-backed cache of finished search rounds, keyed by query.

Controlled by SEARCH_CACHE_DIR: disabled when unset. Entries expire after
``ttl_seconds``; expired or unreadable entries are deleted on read. A hit is
handed to ``SearchJobService.start`` as a zero-cost first round.
"""

from __future__ import annotations

import hashlib
import json
import re
import time
from pathlib import Path

import structlog
from pydantic import ValidationError

from scout.models.contracts import RoundResult, StructuredQuery

logger = structlog.get_logger("scout.search_cache")

CACHE_PREFIX = "searchcache:"
DEFAULT_TTL_SECONDS = 24 * 60 * 60

_SPACE_RE = re.compile(r"\s+")
_PUNCT_RE = re.compile(r"[^\w\s]")


def normalize_query(query: str) -> str:
    """Lower-case, collapse whitespace, drop punctuation."""
    collapsed = _SPACE_RE.sub(" ", query.lower().strip())
    return _PUNCT_RE.sub("", collapsed)


def query_digest(query: str) -> str:
    """SHA-256 of the query as typed, surrounding whitespace removed."""
    return hashlib.sha256(query.strip().encode()).hexdigest()


def search_cache_key(query: str, structured: StructuredQuery | None = None) -> str:
    """``searchcache:`` + SHA-256 over the normalized query and the filters.

    Queries differing only in case, spacing or punctuation share a key. The
    digest of the typed query is stored in the entry, not the key.
    """
    payload = json.dumps(
        {
            "query": normalize_query(query),
            "structured": structured.model_dump(mode="json") if structured else None,
        },
        sort_keys=True,
    )
    return CACHE_PREFIX + hashlib.sha256(payload.encode()).hexdigest()


class SearchCache:
    def __init__(self, directory: str | Path | None, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        self._dir = Path(directory) if directory else None
        self._ttl = ttl_seconds

    @property
    def enabled(self) -> bool:
        return self._dir is not None

    def _path(self, key: str) -> Path | None:
        if self._dir is None:
            return None
        self._dir.mkdir(parents=True, exist_ok=True)
        return self._dir / f"{key.removeprefix(CACHE_PREFIX)}.json"

    def get(self, key: str, query: str | None = None) -> RoundResult | None:
        """Cached round for ``key``. ``query`` only feeds the hit log."""
        path = self._path(key)
        if path is None or not path.exists():
            return None
        try:
            entry = json.loads(path.read_text())
            if time.time() - float(entry["cached_at"]) > self._ttl:
                logger.info("search_cache_expired", key=key)
                path.unlink(missing_ok=True)
                return None
            result = RoundResult.model_validate(entry["result"])
        except (json.JSONDecodeError, OSError, KeyError, TypeError, ValueError, ValidationError):
            logger.warning("search_cache_corrupt", key=key)
            path.unlink(missing_ok=True)
            return None
        logger.info(
            "search_cache_hit",
            key=key,
            curated=len(result.curated),
            exact_query=query is not None and entry.get("query_sha256") == query_digest(query),
        )
        return result

    def set(self, key: str, result: RoundResult, query: str = "") -> None:
        path = self._path(key)
        if path is None:
            return
        entry = {
            "cached_at": time.time(),
            "query": query,
            "query_sha256": query_digest(query),
            "result": result.model_dump(mode="json"),
        }
        try:
            path.write_text(json.dumps(entry))
            logger.info("search_cache_saved", key=key)
        except OSError as exc:
            logger.warning("search_cache_write_failed", key=key, error=str(exc))
