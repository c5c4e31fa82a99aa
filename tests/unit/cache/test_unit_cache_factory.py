# tests/unit/cache/test_unit_cache_factory.py — v4
"""Tests for cache/cache_factory.py."""

from __future__ import annotations

from llmrelay.cache.cache_factory import create_cache, create_fingerprinter
from llmrelay.cache.fingerprint import DocumentFingerprinter
from llmrelay.cache.similarity_cache import SimilarityCache
from llmrelay.config.settings import Settings


class TestCreateCache:
    def test_default(self):
        cache = create_cache()
        assert isinstance(cache, SimilarityCache)
        assert isinstance(cache.fingerprinter, DocumentFingerprinter)

    def test_from_settings(self):
        s = Settings(_env_file=None, max_size=42, fuzzy_match_threshold=0.9)
        cache = create_cache(s)
        assert cache is not None
        assert cache.max_size == 42
        assert cache.config.fuzzy_match_threshold == 0.9

    def test_disabled(self):
        assert create_cache(Settings(_env_file=None, cache_enabled=False)) is None

    def test_without_fingerprinting(self):
        cache = create_cache(Settings(_env_file=None, fingerprint_enabled=False))
        assert cache is not None
        assert cache.fingerprinter is None

    def test_clock_forwarded(self, clock):
        cache = create_cache(Settings(_env_file=None), clock=clock)
        cache.set("k", "v", ttl=1)
        clock.advance(2)
        assert cache.get("k") is None


class TestCreateFingerprinter:
    def test_threshold_from_settings(self):
        fp = create_fingerprinter(Settings(_env_file=None, fingerprint_similarity_threshold=0.7))
        assert fp is not None
        assert fp.similarity_threshold == 0.7

    def test_disabled(self):
        assert create_fingerprinter(Settings(_env_file=None, fingerprint_enabled=False)) is None
