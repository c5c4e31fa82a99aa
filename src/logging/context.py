# src/logging/context.py — v2
"""Contextual logging support: attach request_id, service and route to records.

The router sets these per request; since contextvars are task-local, two
interleaved requests on the same event loop never see each other's values.
"""

from __future__ import annotations

import contextvars
import uuid
from dataclasses import dataclass
from typing import Any

_request_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id", default=None
)
_service: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "service", default=None
)
_route: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "route", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    request_id: str | None = None
    service: str | None = None
    route: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        request_id=_request_id.get(),
        service=_service.get(),
        route=_route.get(),
    )


def new_request_context(request_id: str | None = None) -> str:
    """Start a request: set a fresh request_id and clear service/route."""
    rid = request_id or uuid.uuid4().hex[:12]
    _request_id.set(rid)
    _service.set(None)
    _route.set(None)
    return rid


def set_route_context(service: str, route: str | None = None) -> None:
    """Record which service/mode the current request is being sent to."""
    _service.set(service)
    _route.set(route)


def clear_context() -> None:
    """Reset all context variables."""
    _request_id.set(None)
    _service.set(None)
    _route.set(None)
