# src/cache/fingerprint.py — v3
"""Term-frequency document fingerprinting for near-duplicate detection.

A fingerprint holds:
  1. SHA-256 of the normalized text (identity shortcut)
  2. The top-K significant terms (stopwords and tokens under 3 chars dropped,
     minimum frequency applied) with raw counts
  3. An L2-normalized weight vector over those terms

Two fingerprints with the same hash are 100% similar; otherwise similarity
is the sparse cosine of their term vectors.
"""

from __future__ import annotations

import hashlib
import logging
import re
import time
from collections import Counter, OrderedDict
from typing import Any, Callable, Sequence

from llmrelay.cache.models import (
    DocumentFingerprint,
    FingerprintComparison,
    SimilarityMatch,
)
from llmrelay.core.similarity import sparse_cosine

logger = logging.getLogger(__name__)

STOPWORDS: frozenset[str] = frozenset({
    "a", "an", "the", "and", "or", "but", "if", "then", "else", "when",
    "at", "from", "by", "for", "with", "about", "against", "between",
    "into", "through", "during", "before", "after", "above", "below",
    "to", "of", "in", "on", "is", "are", "was", "were", "be", "been",
    "being", "have", "has", "had", "having", "do", "does", "did", "doing",
    "this", "that", "these", "those", "i", "you", "he", "she", "it", "we", "they",
})

MIN_TERM_LENGTH = 3


class DocumentFingerprinter:
    """Generate and compare document fingerprints.

    Args:
        similarity_threshold: Minimum cosine similarity for a match.
        signature_term_count: Number of most frequent terms kept (K).
        min_term_frequency: Terms seen fewer times are dropped.
        max_cache_size: Bound on the fingerprint lookup table (oldest evicted).
        clock: Wall-clock source for ``generated_at``.
    """

    def __init__(
        self,
        similarity_threshold: float = 0.85,
        signature_term_count: int = 50,
        min_term_frequency: int = 2,
        max_cache_size: int = 100,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not 0.0 < similarity_threshold <= 1.0:
            raise ValueError(
                f"similarity_threshold must be in (0, 1], got {similarity_threshold}"
            )
        self.similarity_threshold = similarity_threshold
        self.signature_term_count = signature_term_count
        self.min_term_frequency = min_term_frequency
        self.max_cache_size = max_cache_size
        self._clock = clock
        self._cache: OrderedDict[str, DocumentFingerprint] = OrderedDict()

    def generate_fingerprint(
        self, text: Any, signature_term_count: int | None = None
    ) -> DocumentFingerprint | None:
        """Fingerprint a document.

        Args:
            text: Document text. Anything other than a non-empty str yields None.
            signature_term_count: Per-call override of K.

        Returns:
            DocumentFingerprint, or None for empty/invalid input.
        """
        if not isinstance(text, str) or not text:
            logger.warning("Invalid text provided for fingerprinting")
            return None

        start = time.perf_counter()
        normalized = normalize_text(text)
        full_hash = hashlib.sha256(normalized.encode("utf-8")).hexdigest()

        cached = self._cache.get(full_hash[:10])
        if cached is not None and cached.full_hash == full_hash:
            self._cache.move_to_end(cached.cache_key)
            return cached

        frequencies = extract_term_frequencies(normalized)
        signature = self._signature_terms(
            frequencies, signature_term_count or self.signature_term_count
        )
        fingerprint = DocumentFingerprint(
            full_hash=full_hash,
            signature_terms=signature,
            term_vector=build_term_vector(signature),
            length=len(text),
            generated_at=self._clock(),
            processing_time_ms=(time.perf_counter() - start) * 1000,
        )
        self._remember(fingerprint)

        logger.debug(
            "Fingerprint generated in %.2fms (%d terms, %d chars)",
            fingerprint.processing_time_ms, len(signature), len(text),
        )
        return fingerprint

    def compare(self, doc1: Any, doc2: Any) -> FingerprintComparison:
        """Compare two documents given as text or fingerprints."""
        fp1 = self._as_fingerprint(doc1)
        fp2 = self._as_fingerprint(doc2)
        if fp1 is None or fp2 is None:
            return FingerprintComparison()

        if fp1.full_hash == fp2.full_hash:
            return FingerprintComparison(similarity=1.0, is_match=True, match_type="exact")

        similarity = sparse_cosine(fp1.term_vector, fp2.term_vector)
        is_match = similarity >= self.similarity_threshold
        return FingerprintComparison(
            similarity=similarity,
            is_match=is_match,
            match_type="similar" if is_match else "different",
        )

    def find_most_similar(
        self, target: Any, collection: Sequence[Any]
    ) -> SimilarityMatch:
        """Scan a collection for the item most similar to target.

        Items may be raw text or fingerprints. Ties keep the first item.
        """
        if not collection:
            return SimilarityMatch()
        target_fp = self._as_fingerprint(target)
        if target_fp is None:
            return SimilarityMatch()

        best = SimilarityMatch()
        for index, item in enumerate(collection):
            score = self.compare(target_fp, item).similarity
            best.scores.append(score)
            if score > best.similarity:
                best.best_index = index
                best.best_item = item
                best.similarity = score

        best.is_match = best.best_index is not None and (
            best.similarity >= self.similarity_threshold
        )
        best.match_type = "similar" if best.is_match else "different"
        if best.is_match and best.similarity >= 1.0:
            best.match_type = "exact"
        return best

    def clear_cache(self) -> int:
        """Drop every cached fingerprint. Returns how many were removed."""
        removed = len(self._cache)
        self._cache.clear()
        logger.info("Cleared fingerprint cache (%d items)", removed)
        return removed

    def get_cache_stats(self) -> dict[str, int]:
        return {"cache_size": len(self._cache), "max_cache_size": self.max_cache_size}

    # --- internals ---

    def _as_fingerprint(self, doc: Any) -> DocumentFingerprint | None:
        if isinstance(doc, DocumentFingerprint):
            return doc
        return self.generate_fingerprint(doc)

    def _signature_terms(self, frequencies: Counter[str], count: int) -> dict[str, int]:
        kept = [
            (term, freq) for term, freq in frequencies.most_common()
            if freq >= self.min_term_frequency
        ]
        return dict(kept[:count])

    def _remember(self, fingerprint: DocumentFingerprint) -> None:
        key = fingerprint.cache_key
        self._cache[key] = fingerprint
        self._cache.move_to_end(key)
        while len(self._cache) > self.max_cache_size:
            self._cache.popitem(last=False)


def normalize_text(text: str) -> str:
    """Lowercase, replace punctuation with spaces, collapse whitespace."""
    text = re.sub(r"[^\w\s]", " ", text.lower())
    return re.sub(r"\s+", " ", text).strip()


def extract_term_frequencies(normalized: str) -> Counter[str]:
    """Count significant terms in already-normalized text."""
    return Counter(
        term for term in normalized.split()
        if len(term) >= MIN_TERM_LENGTH and term not in STOPWORDS
    )


def build_term_vector(terms: dict[str, int]) -> dict[str, float]:
    """L2-normalize raw term counts. Empty input gives an empty vector."""
    magnitude = sum(freq * freq for freq in terms.values()) ** 0.5
    if magnitude == 0:
        return {}
    return {term: freq / magnitude for term, freq in terms.items()}
