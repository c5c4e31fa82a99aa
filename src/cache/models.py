# src/cache/models.py — v2
"""Cache domain models: CacheEntry, CacheStats, CacheLookupResult, fingerprints."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

CacheSource = Literal["exact-match", "fuzzy-match", "created"]
EvictionReason = Literal["lru", "expired", "memory", "manual"]
MatchType = Literal["exact", "similar", "different"]


@dataclass
class CacheEntry:
    """Single cache slot. Owned exclusively by one SimilarityCache.

    Times are clock seconds (monotonic by default). ``last_accessed`` drives
    LRU order; ``access_count`` is informational only.
    """

    value: Any
    expires_at: float
    size_estimate_bytes: int
    created_at: float
    last_accessed: float
    access_count: int = 0
    sequence: int = 0

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class CacheLookupResult(BaseModel):
    """Result of get_or_create with provenance."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    value: Any = None
    cached: bool = False
    source: CacheSource = "created"
    similarity: float | None = None
    matched_key: str | None = None
    duration_ms: float = 0.0


class CacheStats(BaseModel):
    """Observability counters for a SimilarityCache."""

    size: int = 0
    max_size: int = 0
    exact_hits: int = 0
    fuzzy_hits: int = 0
    misses: int = 0
    sets: int = 0
    hit_rate: float = 0.0
    evictions: dict[str, int] = {}
    estimated_size_bytes: int = 0
    estimated_size_mb: float = 0.0
    memory_limit_mb: float = 0.0
    utilization: float = 0.0
    fuzzy_enabled: bool = True
    fuzzy_disabled_for_s: float = 0.0


class DocumentFingerprint(BaseModel):
    """Term-frequency signature of a normalized document. Immutable."""

    model_config = ConfigDict(frozen=True)

    full_hash: str
    signature_terms: dict[str, int]
    term_vector: dict[str, float]
    length: int
    generated_at: float
    processing_time_ms: float = 0.0

    @property
    def cache_key(self) -> str:
        return self.full_hash[:10]


class FingerprintComparison(BaseModel):
    """Similarity verdict for two fingerprints."""

    similarity: float = 0.0
    is_match: bool = False
    match_type: MatchType = "different"


@dataclass
class SimilarityMatch:
    """Best candidate from DocumentFingerprinter.find_most_similar."""

    best_index: int | None = None
    best_item: Any = None
    similarity: float = 0.0
    is_match: bool = False
    match_type: MatchType = "different"
    scores: list[float] = field(default_factory=list)
