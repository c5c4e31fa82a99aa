# src/resilience/models.py — v1
"""Circuit breaker state models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class CircuitStatus(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class StateTransition(BaseModel):
    """One entry of a circuit's transition history."""

    timestamp: float
    status: CircuitStatus
    reason: str


class CircuitState(BaseModel):
    """Snapshot of one circuit, as exposed to dashboards.

    Times are in the breaker's clock seconds (monotonic by default).
    """

    name: str
    status: CircuitStatus = CircuitStatus.CLOSED
    failure_count: int = 0
    success_count: int = 0
    total_requests: int = 0
    last_failure_at: float | None = None
    last_success_at: float | None = None
    cooldown_ends_at: float | None = None
    cooldown_remaining_s: float = 0.0
    consecutive_rate_limits: int = 0
    half_open_in_flight: int = 0
    history: list[StateTransition] = []
