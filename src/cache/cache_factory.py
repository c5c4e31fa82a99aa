# src/cache/cache_factory.py — v3
"""Factory for the response cache and its fingerprinter."""

from __future__ import annotations

import time
from typing import Callable

from llmrelay.cache.fingerprint import DocumentFingerprinter
from llmrelay.cache.similarity_cache import SimilarityCache
from llmrelay.config.settings import Settings


def create_fingerprinter(settings: Settings | None = None) -> DocumentFingerprinter | None:
    """Build the fingerprinter, or None when fingerprinting is disabled."""
    if settings is None:
        return DocumentFingerprinter()
    if not settings.fingerprint_enabled:
        return None
    return DocumentFingerprinter(
        similarity_threshold=settings.fingerprint_similarity_threshold,
    )


def create_cache(
    settings: Settings | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> SimilarityCache | None:
    """Instantiate the configured response cache.

    Args:
        settings: Application settings. Defaults to CacheConfig defaults
            with a fingerprinter attached.
        clock: Monotonic time source forwarded to the cache.

    Returns:
        SimilarityCache, or None when CACHE_ENABLED is false.
    """
    if settings is None:
        return SimilarityCache(fingerprinter=DocumentFingerprinter(), clock=clock)
    if not settings.cache_enabled:
        return None
    return SimilarityCache(
        config=settings.cache_config(),
        fingerprinter=create_fingerprinter(settings),
        clock=clock,
    )
