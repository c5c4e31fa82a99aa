# src/core/similarity.py — v3
"""Text similarity utilities shared by the cache and the fingerprinter.

- normalize_for_comparison: lowercase, expand common contractions, strip
  punctuation, collapse whitespace
- jaccard_similarity: word-set overlap of two normalized strings
- sparse_cosine: dot product of two L2-normalized sparse term vectors
"""

from __future__ import annotations

import re

# Contractions expanded before punctuation is stripped, so that
# "what's" and "what is" normalize to the same tokens.
_CONTRACTIONS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\b(what|that|it|there|here|who|where|how|when|why|he|she)'s\b"), r"\1 is"),
    (re.compile(r"\blet's\b"), "let us"),
    (re.compile(r"\bcan't\b"), "can not"),
    (re.compile(r"\bwon't\b"), "will not"),
    (re.compile(r"n't\b"), " not"),
    (re.compile(r"'re\b"), " are"),
    (re.compile(r"'ve\b"), " have"),
    (re.compile(r"'ll\b"), " will"),
    (re.compile(r"'m\b"), " am"),
    (re.compile(r"'d\b"), " would"),
]

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_for_comparison(text: str) -> str:
    """Normalize a string for similarity comparison.

    Example:
        >>> normalize_for_comparison("What's the capital of France?")
        'what is the capital of france'
    """
    text = text.lower().replace("’", "'")
    for pattern, replacement in _CONTRACTIONS:
        text = pattern.sub(replacement, text)
    text = _PUNCTUATION.sub("", text)
    return _WHITESPACE.sub(" ", text).strip()


def jaccard_similarity(a: str, b: str) -> float:
    """Jaccard similarity of the whitespace-separated word sets of a and b.

    Inputs are expected to be normalized already. Two empty strings are
    considered identical.
    """
    words_a = set(a.split())
    words_b = set(b.split())
    if not words_a and not words_b:
        return 1.0
    union = words_a | words_b
    return len(words_a & words_b) / len(union)


def sparse_cosine(vector_a: dict[str, float], vector_b: dict[str, float]) -> float:
    """Cosine similarity of two unit-normalized sparse vectors.

    Only terms present in both vectors contribute; no division is needed
    because both inputs are already L2-normalized.
    """
    if len(vector_b) < len(vector_a):
        vector_a, vector_b = vector_b, vector_a
    dot = 0.0
    for term, weight in vector_a.items():
        other = vector_b.get(term)
        if other:
            dot += weight * other
    # Clamp float drift on identical vectors
    return min(1.0, dot)
