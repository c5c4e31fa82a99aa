# src/routing/classifier.py — v1
"""Query classifier: detect internet, deep-research and chart intents.

Three independent regex pattern sets, matched case-insensitively anywhere
in the query.
"""

from __future__ import annotations

import re

from llmrelay.routing.models import QueryIntent

_INTERNET_PATTERNS = [
    r"current events",
    r"latest news",
    r"what happened (today|yesterday|this week|this month)",
    r"recent developments",
    r"updated information",
    r"stock (price|market)",
    r"weather",
    r"sports (results|scores)",
]
_DEEP_RESEARCH_PATTERNS = [
    r"in-depth analysis",
    r"comprehensive research",
    r"detailed (report|investigation)",
    r"academic (research|paper|study)",
    r"scholarly (articles|sources)",
    r"deep research",
]
_CHART_PATTERNS = [
    r"(create|generate) (an?|the) (chart|graph|plot|visualization)",
    r"visualize this data",
    r"(create|make) (an?|the) (bar|line|pie|scatter|donut|area) (chart|graph|plot)",
]

_INTERNET = [re.compile(p, re.IGNORECASE) for p in _INTERNET_PATTERNS]
_DEEP_RESEARCH = [re.compile(p, re.IGNORECASE) for p in _DEEP_RESEARCH_PATTERNS]
_CHART = [re.compile(p, re.IGNORECASE) for p in _CHART_PATTERNS]


def needs_internet(query: str) -> bool:
    return any(p.search(query) for p in _INTERNET)


def needs_deep_research(query: str) -> bool:
    return any(p.search(query) for p in _DEEP_RESEARCH)


def needs_chart(query: str) -> bool:
    return any(p.search(query) for p in _CHART)


def classify_query(query: str) -> QueryIntent:
    """Classify a query into its routing intents.

    Args:
        query: User query string.

    Returns:
        QueryIntent with one flag per pattern set.
    """
    return QueryIntent(
        needs_internet=needs_internet(query),
        needs_deep_research=needs_deep_research(query),
        needs_chart=needs_chart(query),
    )
