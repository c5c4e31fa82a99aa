# src/resilience/client.py — v2
"""Shared edge for outbound calls: circuit breaker + timeout + error tagging."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, TypeVar

from llmrelay.core.errors import (
    CircuitOpenError,
    UpstreamFailureError,
    UpstreamTimeoutError,
    extract_status_code,
)
from llmrelay.resilience.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ResilientClient:
    """Wrap calls to one upstream service.

    Every error leaving call() carries ``source_service``:
      - CircuitOpenError: rejected without calling (passed through)
      - UpstreamTimeoutError: exceeded request_timeout (the call is cancelled)
      - UpstreamFailureError: anything else, chained to the original error

    Args:
        service: Upstream service name.
        breaker: Circuit breaker guarding the service.
        request_timeout: Per-call timeout in seconds. Defaults to the
            breaker's configured request_timeout. scale_timeout() shrinks the
            effective timeout from this base under resource pressure.
    """

    def __init__(
        self,
        service: str,
        breaker: CircuitBreaker,
        request_timeout: float | None = None,
    ) -> None:
        self.service = service
        self.breaker = breaker
        self.request_timeout = (
            breaker.config.request_timeout if request_timeout is None else request_timeout
        )
        if self.request_timeout <= 0:
            raise ValueError(f"request_timeout must be > 0, got {self.request_timeout}")
        self.base_timeout = self.request_timeout

    def scale_timeout(self, factor: float) -> float:
        """Set the effective timeout to base * factor (factor capped at 1).

        Returns:
            The new effective timeout in seconds.
        """
        if factor <= 0:
            raise ValueError(f"factor must be > 0, got {factor}")
        self.request_timeout = self.base_timeout * min(1.0, factor)
        return self.request_timeout

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Invoke ``fn(*args, **kwargs)`` through the breaker with a timeout.

        Raises:
            CircuitOpenError: Circuit is open; fn was not called.
            UpstreamTimeoutError: fn did not finish within request_timeout.
            UpstreamFailureError: fn raised.
        """
        try:
            return await self.breaker.guard(
                lambda: fn(*args, **kwargs), self.request_timeout
            )
        except CircuitOpenError:
            logger.info("%s: call rejected, circuit open", self.service)
            raise
        except UpstreamTimeoutError as exc:
            logger.warning("%s: call timed out after %.1fs", self.service, self.request_timeout)
            if exc.source_service != self.service:
                raise UpstreamTimeoutError(self.service, self.request_timeout) from exc
            raise
        except Exception as exc:
            status = extract_status_code(exc)
            logger.warning(
                "%s: call failed (%s%s): %s",
                self.service, type(exc).__name__,
                f", HTTP {status}" if status is not None else "", exc,
            )
            raise UpstreamFailureError(self.service, exc, status) from exc

    def is_available(self) -> bool:
        return self.breaker.is_available()
