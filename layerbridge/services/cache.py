from __future__ import annotations

import asyncio
import hashlib
import re
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable

from ..core.config import CacheSettings
from ..core.logging import get_logger, preview
from ..core.metrics import record_cache_lookup

logger = get_logger(name=__name__)

_PUNCTUATION = re.compile(r"[。、！？]")
_WHITESPACE = re.compile(r"\s+")
_YEAR = re.compile(r"202[4-9]年?")
_PHRASE_REWRITES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"について教えて|を説明して|について知りたい"), "について"),
    (re.compile(r"最新の|最近の|新しい"), "最新"),
    (re.compile(r"具体的に|詳しく|詳細に"), "詳細"),
)


def normalize_query(query: str) -> str:
    text = query.lower().strip()
    text = _PUNCTUATION.sub("", text)
    text = _WHITESPACE.sub(" ", text)
    text = _YEAR.sub("2024-2025", text)
    for pattern, replacement in _PHRASE_REWRITES:
        text = pattern.sub(replacement, text)
    return text


def cache_key(query: str, backend: str, scope: str = "") -> str:
    digest = hashlib.sha256(f"{normalize_query(query)}:{backend}:{scope}".encode("utf-8")).hexdigest()
    return digest[:16]


def similarity(left: str, right: str) -> float:
    """Jaccard similarity over whitespace tokens; symmetric in its arguments."""
    tokens_left = set(left.split())
    tokens_right = set(right.split())
    union = tokens_left | tokens_right
    if not union:
        return 0.0
    return len(tokens_left & tokens_right) / len(union)


@dataclass(slots=True)
class CacheEntry:
    key: str
    query: str
    normalized: str
    backend: str
    content: Any
    created_at: float
    ttl: float
    sources: list[Any] = field(default_factory=list)
    latency: float = 0.0
    scope: str = ""

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class SearchCache:
    """TTL cache for read-only, search-like requests with near-duplicate matching."""

    def __init__(
        self,
        settings: CacheSettings | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings or CacheSettings()
        self._clock = clock
        self._storage: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = asyncio.Lock()
        self._hits = 0
        self._similar_hits = 0
        self._misses = 0
        self._expired = 0

    @property
    def enabled(self) -> bool:
        return self._settings.enabled

    def is_cacheable(self, action: str) -> bool:
        return self._settings.enabled and action in self._settings.cacheable_actions

    async def get(self, query: str, backend: str = "gemini", *, scope: str = "") -> CacheEntry | None:
        if not self._settings.enabled:
            return None
        backend = str(backend)
        key = cache_key(query, backend, scope)
        async with self._lock:
            now = self._clock()
            entry = self._storage.get(key)
            if entry is not None and entry.is_expired(now):
                del self._storage[key]
                self._expired += 1
                entry = None
                logger.debug("cache_expired", backend=backend, query=preview(query, 50))
            if entry is not None:
                self._hits += 1
                record_cache_lookup(backend=backend, hit=True, match="exact")
                logger.debug("cache_hit", backend=backend, query=preview(query, 50), age=now - entry.created_at)
                return entry
            similar = self._find_similar(normalize_query(query), backend, scope, now)
            if similar is not None:
                self._hits += 1
                self._similar_hits += 1
                record_cache_lookup(backend=backend, hit=True, match="similar")
                logger.debug(
                    "cache_hit_similar",
                    backend=backend,
                    query=preview(query, 50),
                    matched_query=preview(similar.query, 50),
                )
                return similar
            self._misses += 1
            record_cache_lookup(backend=backend, hit=False)
            logger.debug("cache_miss", backend=backend, query=preview(query, 50))
            return None

    async def set(
        self,
        query: str,
        result: Any,
        backend: str = "gemini",
        latency: float = 0.0,
        *,
        scope: str = "",
    ) -> CacheEntry | None:
        if not self._settings.enabled:
            return None
        backend = str(backend)
        key = cache_key(query, backend, scope)
        entry = CacheEntry(
            key=key,
            query=query,
            normalized=normalize_query(query),
            backend=backend,
            content=result,
            created_at=self._clock(),
            ttl=self._settings.ttl_seconds,
            sources=_extract_sources(result),
            latency=latency,
            scope=scope,
        )
        async with self._lock:
            self._storage.pop(key, None)
            self._storage[key] = entry
            evicted = 0
            while len(self._storage) > self._settings.max_entries:
                self._storage.popitem(last=False)
                evicted += 1
        if evicted:
            logger.debug("cache_evicted", evicted=evicted, remaining=len(self._storage))
        logger.debug("cache_stored", backend=backend, query=preview(query, 50), ttl=entry.ttl)
        return entry

    async def cleanup(self) -> int:
        async with self._lock:
            now = self._clock()
            expired_keys = [key for key, entry in self._storage.items() if entry.is_expired(now)]
            for key in expired_keys:
                del self._storage[key]
            self._expired += len(expired_keys)
        if expired_keys:
            logger.debug("cache_cleanup_completed", removed=len(expired_keys), remaining=len(self._storage))
        return len(expired_keys)

    async def clear(self) -> None:
        async with self._lock:
            cleared = len(self._storage)
            self._storage.clear()
            self._hits = 0
            self._similar_hits = 0
            self._misses = 0
            self._expired = 0
        logger.info("cache_cleared", cleared_entries=cleared)

    def stats(self) -> dict[str, Any]:
        lookups = self._hits + self._misses
        return {
            "entries": len(self._storage),
            "hits": self._hits,
            "similar_hits": self._similar_hits,
            "misses": self._misses,
            "hit_rate": (self._hits / lookups) if lookups else 0.0,
            "expired": self._expired,
        }

    def __len__(self) -> int:
        return len(self._storage)

    def _find_similar(self, normalized: str, backend: str, scope: str, now: float) -> CacheEntry | None:
        threshold = self._settings.similarity_threshold
        best: CacheEntry | None = None
        best_score = 0.0
        for entry in self._storage.values():
            if entry.backend != backend or entry.scope != scope or entry.is_expired(now):
                continue
            score = similarity(normalized, entry.normalized)
            if score >= threshold and score > best_score:
                best = entry
                best_score = score
        return best


def _extract_sources(result: Any) -> list[Any]:
    if isinstance(result, dict):
        sources = result.get("sources")
        if isinstance(sources, list):
            return list(sources)
    return []


__all__ = ["CacheEntry", "SearchCache", "cache_key", "normalize_query", "similarity"]
