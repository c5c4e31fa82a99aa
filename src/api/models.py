# src/api/models.py — v2
"""API-level models: AskRequest and the RelayStatus health contract."""

from __future__ import annotations

from pydantic import BaseModel

from llmrelay.cache.models import CacheStats
from llmrelay.monitor.models import LeakDetectorStatus, ResourceManagerStatus
from llmrelay.resilience.models import CircuitState
from llmrelay.routing.models import RouterStatus


class AskRequest(BaseModel):
    """One query as accepted at the edge."""

    query: str
    preferred_service: str | None = None
    force_deep_research: bool = False
    skip_cache: bool = False
    system_prompt: str | None = None


class RelayStatus(BaseModel):
    """Dashboard snapshot: circuits, cache, memory, resources and routing."""

    running: bool = False
    circuits: dict[str, CircuitState] = {}
    cache: CacheStats | None = None
    memory: LeakDetectorStatus | None = None
    resources: ResourceManagerStatus | None = None
    router: RouterStatus = RouterStatus()
