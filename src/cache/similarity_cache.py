# src/cache/similarity_cache.py — v1
"""In-memory response cache with TTL, LRU, memory budget and fuzzy lookup.

Lookup order in get_or_create: exact key, then fuzzy match (Jaccard over
normalized word sets, or fingerprint cosine for long texts), then the
factory. Exact matches always win over fuzzy ones, and a fuzzy match is
never returned below the threshold. Among equally similar candidates the
most recently inserted entry wins.

Eviction policies are independent:
  - expiry: lazily on access plus a periodic sweep
  - LRU: one entry when inserting a new key at capacity
  - memory pressure: max(5, ceil(20% of entries)) in LRU order, and fuzzy
    matching is suspended for a cooldown window
"""

from __future__ import annotations

import inspect
import json
import logging
import math
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable

from pydantic import BaseModel

from llmrelay.cache.base_cache_store import BaseCacheStore, ValueFactory
from llmrelay.cache.fingerprint import DocumentFingerprinter
from llmrelay.cache.models import CacheEntry, CacheLookupResult, CacheStats, EvictionReason
from llmrelay.config.settings import CacheConfig
from llmrelay.core.errors import CacheFactoryError
from llmrelay.core.scheduler import PeriodicTask
from llmrelay.core.similarity import jaccard_similarity, normalize_for_comparison

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024
UNSERIALIZABLE_SIZE = 1000
OPAQUE_SIZE = 100


@dataclass
class FuzzyMatch:
    """A fuzzy hit: the stored key it matched and how closely."""

    key: str
    value: Any
    similarity: float


def estimate_size(value: Any) -> int:
    """Heuristic byte cost of a cached value.

    Strings count 2 bytes per char, numbers 8, None 0. Structured values
    are serialized to JSON and counted 2 bytes per char; values that
    cannot be serialized cost a flat 1000.
    """
    if value is None:
        return 0
    if isinstance(value, str):
        return len(value) * 2
    if isinstance(value, (int, float)):
        return 8
    if isinstance(value, (bytes, bytearray)):
        return len(value)
    if isinstance(value, BaseModel):
        try:
            return len(value.model_dump_json()) * 2
        except (TypeError, ValueError):
            return UNSERIALIZABLE_SIZE
    if callable(value):
        return OPAQUE_SIZE
    try:
        return len(json.dumps(value)) * 2
    except (TypeError, ValueError):
        return UNSERIALIZABLE_SIZE


class SimilarityCache(BaseCacheStore):
    """Similarity-aware key/value cache.

    Args:
        config: Cache options (defaults documented on CacheConfig).
        fingerprinter: Optional fingerprinter used for long keys.
        clock: Monotonic time source in seconds. Injected by tests.
        name: Label used in logs and status output.
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        fingerprinter: DocumentFingerprinter | None = None,
        clock: Callable[[], float] = time.monotonic,
        name: str = "responses",
    ) -> None:
        self.config = config or CacheConfig()
        self.name = name
        self.fingerprinter = fingerprinter
        self._clock = clock

        self.max_size = self.config.max_size
        if self.config.low_memory_mode:
            self.max_size = max(1, self.config.max_size // 2)

        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._estimated_bytes = 0
        self._sequence = 0
        self._fuzzy_disabled_until: float | None = None

        self._exact_hits = 0
        self._fuzzy_hits = 0
        self._misses = 0
        self._sets = 0
        self._evictions: dict[str, int] = {"lru": 0, "expired": 0, "memory": 0, "manual": 0}

        self._sweeper = PeriodicTask(
            f"cache-sweep:{name}", self.config.sweep_interval, self._sweep
        )

    # --- lifecycle ---

    def start(self) -> None:
        """Start the periodic expiry/memory sweep (idempotent)."""
        self._sweeper.start()

    async def stop(self) -> None:
        await self._sweeper.stop()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    # --- exact access ---

    def get(self, key: str) -> Any | None:
        entry = self._live_entry(key)
        if entry is None:
            self._misses += 1
            return None
        self._exact_hits += 1
        self._touch(key, entry)
        return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        ttl = self.config.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError(f"ttl must be > 0, got {ttl}")

        if key in self._entries:
            self._drop(key)
        elif len(self._entries) >= self.max_size:
            self.evict_lru(1)

        now = self._clock()
        self._sequence += 1
        entry = CacheEntry(
            value=value,
            expires_at=now + ttl,
            size_estimate_bytes=estimate_size(value),
            created_at=now,
            last_accessed=now,
            sequence=self._sequence,
        )
        self._entries[key] = entry
        self._estimated_bytes += entry.size_estimate_bytes
        self._sets += 1

    def delete(self, key: str) -> bool:
        if key not in self._entries:
            return False
        self._drop(key)
        self._evictions["manual"] += 1
        return True

    # --- fuzzy access ---

    @property
    def fuzzy_enabled(self) -> bool:
        """Whether fuzzy lookups currently run (config, mode and cooldown)."""
        if not self.config.enable_fuzzy_match or self.config.low_memory_mode:
            return False
        if self._fuzzy_disabled_until is None:
            return True
        if self._clock() >= self._fuzzy_disabled_until:
            self._fuzzy_disabled_until = None
            logger.info("Fuzzy matching re-enabled for cache '%s'", self.name)
            return True
        return False

    def find_similar(
        self, query: str, threshold: float | None = None, scope: str = ""
    ) -> Any | None:
        """Value of the most similar live entry, or None.

        Args:
            query: Free text (or a full key) to match against stored keys.
            threshold: Minimum similarity; defaults to fuzzy_match_threshold.
            scope: Only keys starting with this prefix are candidates, and
                the prefix is ignored when comparing.
        """
        match = self.match_similar(query, threshold, scope)
        if match is None:
            return None
        self._fuzzy_hits += 1
        return match.value

    def match_similar(
        self, query: str, threshold: float | None = None, scope: str = ""
    ) -> FuzzyMatch | None:
        """Best fuzzy candidate at or above threshold, touching its recency."""
        if not self.fuzzy_enabled or not self._entries:
            return None
        threshold = self.config.fuzzy_match_threshold if threshold is None else threshold
        if scope and query.startswith(scope):
            query = query[len(scope):]

        now = self._clock()
        normalized_query = normalize_for_comparison(query)
        best_key: str | None = None
        best_entry: CacheEntry | None = None
        best_score = 0.0

        for key, entry in list(self._entries.items()):
            if entry.is_expired(now):
                self._expire(key)
                continue
            if scope and not key.startswith(scope):
                continue
            score = self._similarity(query, normalized_query, key[len(scope):])
            if score < threshold or score <= 0.0:
                continue
            if (
                best_entry is None
                or score > best_score
                or (score == best_score and entry.sequence > best_entry.sequence)
            ):
                best_key, best_entry, best_score = key, entry, score

        if best_key is None or best_entry is None:
            return None
        self._touch(best_key, best_entry)
        logger.debug(
            "Fuzzy cache hit (%.2f) for '%s' -> '%s'",
            best_score, _preview(query), _preview(best_key),
        )
        return FuzzyMatch(key=best_key, value=best_entry.value, similarity=best_score)

    async def get_or_create(
        self,
        key: str,
        factory: ValueFactory,
        ttl: float | None = None,
        scope: str = "",
    ) -> CacheLookupResult:
        """Exact match, then fuzzy match, then factory.

        Raises:
            CacheFactoryError: The factory raised; nothing is cached.
        """
        start = time.perf_counter()

        entry = self._live_entry(key)
        if entry is not None:
            self._exact_hits += 1
            self._touch(key, entry)
            return CacheLookupResult(
                value=entry.value, cached=True, source="exact-match",
                similarity=1.0, matched_key=key, duration_ms=_elapsed_ms(start),
            )

        match = self.match_similar(key, scope=scope)
        if match is not None:
            self._fuzzy_hits += 1
            return CacheLookupResult(
                value=match.value, cached=True, source="fuzzy-match",
                similarity=match.similarity, matched_key=match.key,
                duration_ms=_elapsed_ms(start),
            )

        self._misses += 1
        try:
            value = factory()
            if inspect.isawaitable(value):
                value = await value
        except Exception as exc:
            logger.error("Cache factory failed for '%s': %s", _preview(key), exc)
            raise CacheFactoryError(key, exc) from exc

        self.set(key, value, ttl)
        return CacheLookupResult(
            value=value, cached=False, source="created", duration_ms=_elapsed_ms(start)
        )

    # --- eviction ---

    def remove_expired(self) -> int:
        """Physically remove every expired entry. Returns how many."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            self._expire(key)
        if expired:
            logger.debug("Removed %d expired entries from cache '%s'", len(expired), self.name)
        return len(expired)

    def evict_lru(self, count: int = 1, reason: EvictionReason = "lru") -> list[str]:
        """Evict up to ``count`` least-recently-used entries.

        Returns:
            Evicted keys, least recently used first.
        """
        evicted: list[str] = []
        while self._entries and len(evicted) < count:
            key = next(iter(self._entries))
            self._drop(key)
            self._evictions[reason] += 1
            evicted.append(key)
        return evicted

    def evict_for_memory_pressure(self, reason: str = "memory pressure") -> int:
        """Evict max(min, ceil(ratio * size)) entries and pause fuzzy matching."""
        size = len(self._entries)
        target = max(
            self.config.min_pressure_eviction,
            math.ceil(self.config.pressure_eviction_ratio * size),
        )
        evicted = self.evict_lru(min(size, target), reason="memory")
        self._fuzzy_disabled_until = self._clock() + self.config.fuzzy_disable_cooldown
        logger.warning(
            "Cache '%s' evicted %d/%d entries (%s); fuzzy matching paused for %.0fs",
            self.name, len(evicted), size, reason, self.config.fuzzy_disable_cooldown,
        )
        return len(evicted)

    def check_memory(self, heap_used_bytes: int | None = None) -> int:
        """Evict under pressure when the cache or the heap exceeds the budget.

        Args:
            heap_used_bytes: Process heap usage, when the caller has sampled it.

        Returns:
            Number of entries evicted (0 when within budget).
        """
        limit = self.config.memory_limit_mb * BYTES_PER_MB
        if self._estimated_bytes > limit:
            return self.evict_for_memory_pressure(
                f"cache footprint {self._estimated_bytes / BYTES_PER_MB:.1f}MB"
            )
        if heap_used_bytes is not None and heap_used_bytes > limit:
            return self.evict_for_memory_pressure(
                f"heap usage {heap_used_bytes / BYTES_PER_MB:.1f}MB"
            )
        return 0

    def clear(self) -> int:
        """Remove every entry (counted as manual evictions)."""
        removed = len(self._entries)
        self._entries.clear()
        self._estimated_bytes = 0
        self._evictions["manual"] += removed
        logger.info("Cleared cache '%s' (%d entries)", self.name, removed)
        return removed

    # --- stats ---

    @property
    def estimated_size_bytes(self) -> int:
        return self._estimated_bytes

    def get_stats(self) -> CacheStats:
        lookups = self._exact_hits + self._fuzzy_hits + self._misses
        hits = self._exact_hits + self._fuzzy_hits
        limit_bytes = self.config.memory_limit_mb * BYTES_PER_MB
        paused_for = 0.0
        if self._fuzzy_disabled_until is not None:
            paused_for = max(0.0, self._fuzzy_disabled_until - self._clock())
        return CacheStats(
            size=len(self._entries),
            max_size=self.max_size,
            exact_hits=self._exact_hits,
            fuzzy_hits=self._fuzzy_hits,
            misses=self._misses,
            sets=self._sets,
            hit_rate=hits / lookups if lookups else 0.0,
            evictions=dict(self._evictions),
            estimated_size_bytes=self._estimated_bytes,
            estimated_size_mb=round(self._estimated_bytes / BYTES_PER_MB, 3),
            memory_limit_mb=self.config.memory_limit_mb,
            utilization=self._estimated_bytes / limit_bytes if limit_bytes else 0.0,
            fuzzy_enabled=self.fuzzy_enabled,
            fuzzy_disabled_for_s=paused_for,
        )

    # --- internals ---

    def _live_entry(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            self._expire(key)
            return None
        return entry

    def _touch(self, key: str, entry: CacheEntry) -> None:
        entry.access_count += 1
        entry.last_accessed = self._clock()
        self._entries.move_to_end(key)

    def _drop(self, key: str) -> None:
        entry = self._entries.pop(key)
        self._estimated_bytes = max(0, self._estimated_bytes - entry.size_estimate_bytes)

    def _expire(self, key: str) -> None:
        self._drop(key)
        self._evictions["expired"] += 1

    def _similarity(self, raw_query: str, normalized_query: str, raw_key: str) -> float:
        min_length = self.config.fingerprint_min_length
        if (
            self.fingerprinter is not None
            and len(raw_query) >= min_length
            and len(raw_key) >= min_length
        ):
            return self.fingerprinter.compare(raw_query, raw_key).similarity
        return jaccard_similarity(normalized_query, normalize_for_comparison(raw_key))

    def _sweep(self) -> None:
        self.remove_expired()
        self.check_memory()


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


def _preview(text: str, limit: int = 60) -> str:
    return text if len(text) <= limit else text[:limit] + "..."
