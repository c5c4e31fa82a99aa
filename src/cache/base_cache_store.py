# src/cache/base_cache_store.py — v2
"""Abstract cache provider interface consumed by LLM service wrappers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

from llmrelay.cache.models import CacheLookupResult

ValueFactory = Callable[[], "Awaitable[Any] | Any"]


class BaseCacheStore(ABC):
    """Unified interface for in-process response caches.

    get/set/delete are synchronous so that bookkeeping never spans an
    await point; only get_or_create suspends (while the factory runs).
    """

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Exact-key lookup. Returns None on miss or expiry."""

    @abstractmethod
    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store a value with an optional TTL in seconds."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove an entry. Returns True if it existed."""

    @abstractmethod
    async def get_or_create(
        self,
        key: str,
        factory: ValueFactory,
        ttl: float | None = None,
        scope: str = "",
    ) -> CacheLookupResult:
        """Return a cached value or build, store and return a fresh one."""
