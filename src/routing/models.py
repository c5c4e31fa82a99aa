# src/routing/models.py — v1
"""Routing types: QueryIntent, RouteDecision, RoutedResponse, RouterStatus."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from llmrelay.cache.models import CacheSource


class QueryIntent(BaseModel):
    """What a query appears to need, from regex pattern sets."""

    needs_internet: bool = False
    needs_deep_research: bool = False
    needs_chart: bool = False

    @property
    def label(self) -> str:
        """Coarse intent name used for decision counters."""
        if self.needs_chart:
            return "chart"
        if self.needs_internet and self.needs_deep_research:
            return "internet_deep_research"
        if self.needs_internet:
            return "internet"
        if self.needs_deep_research:
            return "deep_research"
        return "general"


class RouteDecision(BaseModel):
    service: str
    mode: str
    reason: str
    intent: QueryIntent = QueryIntent()

    @property
    def cache_scope(self) -> str:
        return f"{self.service}:{self.mode}:"

    def cache_key(self, query: str) -> str:
        return f"{self.cache_scope}{query}"


class RoutedResponse(BaseModel):
    """Answer returned by ServiceRouter.route_query."""

    content: str
    service: str
    mode: str
    cached: bool = False
    cache_source: CacheSource | None = None
    similarity: float | None = None
    fallback_used: bool = False
    failed_service: str | None = None
    request_id: str | None = None
    response: Any = None


class RouterStatus(BaseModel):
    service_health: dict[str, bool] = {}
    decisions: dict[str, int] = {}
    routes: dict[str, int] = {}
    requests: int = 0
    cache_hits: int = 0
    fallbacks: int = 0
    failures: int = 0
