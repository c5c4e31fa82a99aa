# src/resilience/circuit_breaker.py — v1
"""Per-service circuit breaker and the registry that owns them.

State machine:
  CLOSED     failures accumulate; at failure_threshold (and once
             min_request_threshold requests were seen) the circuit opens.
             Each success forgives one failure.
  OPEN       calls fail fast with CircuitOpenError. Once the cooldown has
             elapsed, the next call (or the health check) moves to HALF_OPEN.
  HALF_OPEN  up to success_threshold_to_close probes run concurrently.
             That many successes close the circuit; any failure re-opens it.

HTTP 429 responses count as failures and additionally open the circuit
with a doubled cooldown after rate_limit_open_threshold in a row.

All bookkeeping is synchronous so it is atomic on the event loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, TypeVar

from llmrelay.config.settings import BreakerConfig
from llmrelay.core.errors import CircuitOpenError, UpstreamTimeoutError, extract_status_code
from llmrelay.core.scheduler import PeriodicTask
from llmrelay.resilience.models import CircuitState, CircuitStatus, StateTransition

logger = logging.getLogger(__name__)

T = TypeVar("T")

HISTORY_LIMIT = 100
HISTORY_REPORTED = 10


class CircuitBreaker:
    """Failure/success state machine gating calls to one service.

    Args:
        name: Circuit (service) name, used in errors and logs.
        config: Breaker options.
        clock: Monotonic time source in seconds. Injected by tests.
    """

    def __init__(
        self,
        name: str,
        config: BreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.config = config or BreakerConfig()
        self._clock = clock

        self._status = CircuitStatus.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.total_requests = 0
        self.last_failure_at: float | None = None
        self.last_success_at: float | None = None
        self.cooldown_ends_at: float | None = None
        self.consecutive_rate_limits = 0
        self.half_open_in_flight = 0
        self._last_decay_at: float | None = None
        self._history: deque[StateTransition] = deque(maxlen=HISTORY_LIMIT)
        self._record(CircuitStatus.CLOSED, "Initialized")

    @property
    def status(self) -> CircuitStatus:
        return self._status

    # --- call path ---

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run ``fn(*args, **kwargs)`` through the breaker.

        Raises:
            CircuitOpenError: Circuit is OPEN (fn is not called).
            UpstreamTimeoutError: fn exceeded config.request_timeout.
            Exception: Whatever fn raised, unchanged, after bookkeeping.
        """
        return await self.guard(lambda: fn(*args, **kwargs), self.config.request_timeout)

    async def guard(
        self, make_call: Callable[[], Awaitable[T]], timeout: float | None
    ) -> T:
        """Admit, run with a timeout, and record the outcome of one call.

        The timeout cancels the underlying coroutine.
        """
        is_probe = self.acquire()
        try:
            result = await asyncio.wait_for(make_call(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            self._release(is_probe)
            self.record_failure(reason=f"timed out after {timeout}s")
            raise UpstreamTimeoutError(self.name, timeout or 0.0) from exc
        except asyncio.CancelledError:
            self._release(is_probe)
            raise
        except Exception as exc:
            self._release(is_probe)
            self.record_failure(exc)
            raise
        self._release(is_probe)
        self.record_success()
        return result

    def acquire(self) -> bool:
        """Admission check for one call.

        Returns:
            True when the call is admitted as a HALF_OPEN probe.

        Raises:
            CircuitOpenError: The call must not be attempted.
        """
        now = self._clock()
        if self._status is CircuitStatus.OPEN:
            if self.cooldown_ends_at is not None and now >= self.cooldown_ends_at:
                self._transition(CircuitStatus.HALF_OPEN, "Reset timeout elapsed")
            else:
                retry_after = (self.cooldown_ends_at or now) - now
                raise CircuitOpenError(self.name, retry_after)

        if self._status is CircuitStatus.HALF_OPEN:
            if self.half_open_in_flight >= self.config.success_threshold_to_close:
                raise CircuitOpenError(self.name, 0.0)
            self.half_open_in_flight += 1
            self.total_requests += 1
            return True

        self.total_requests += 1
        return False

    def is_available(self) -> bool:
        """Whether a call would currently be admitted (no side effects)."""
        if self._status is CircuitStatus.CLOSED:
            return True
        if self._status is CircuitStatus.HALF_OPEN:
            return self.half_open_in_flight < self.config.success_threshold_to_close
        return self.cooldown_ends_at is not None and self._clock() >= self.cooldown_ends_at

    # --- bookkeeping ---

    def record_success(self) -> None:
        now = self._clock()
        self.last_success_at = now
        self.consecutive_rate_limits = 0

        if self._status is CircuitStatus.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.config.success_threshold_to_close:
                self._close("Success threshold reached")
        elif self._status is CircuitStatus.CLOSED and self.failure_count > 0:
            self.failure_count -= 1

    def record_failure(
        self, error: BaseException | None = None, reason: str | None = None
    ) -> None:
        now = self._clock()
        self.failure_count += 1
        self.last_failure_at = now

        rate_limited = error is not None and extract_status_code(error) == 429
        if rate_limited:
            self.consecutive_rate_limits += 1

        if self._status is CircuitStatus.HALF_OPEN:
            self._open(self.config.reset_timeout, reason or "Failed in half-open state")
            return
        if self._status is not CircuitStatus.CLOSED:
            return

        if rate_limited and self.consecutive_rate_limits >= self.config.rate_limit_open_threshold:
            self._open(
                self.config.reset_timeout * 2,
                f"Rate limited {self.consecutive_rate_limits} times in a row",
            )
        elif (
            self.failure_count >= self.config.failure_threshold
            and self.total_requests >= self.config.min_request_threshold
        ):
            self._open(self.config.reset_timeout, reason or "Failure threshold reached")

    def health_check(self) -> None:
        """Timer tick: promote expired OPEN circuits and decay old failures."""
        now = self._clock()
        if self._status is CircuitStatus.OPEN:
            if self.cooldown_ends_at is not None and now >= self.cooldown_ends_at:
                self._transition(CircuitStatus.HALF_OPEN, "Health check: reset timeout elapsed")
            return

        if self._status is CircuitStatus.CLOSED and self.failure_count > 0:
            quiet_since = max(
                t for t in (self.last_failure_at, self._last_decay_at, 0.0) if t is not None
            )
            if now - quiet_since >= self.config.failure_decay_interval:
                self.failure_count -= 1
                self._last_decay_at = now
                logger.debug(
                    "%s: decayed failure count to %d", self.name, self.failure_count
                )

    # --- manual control ---

    def force_state(self, status: CircuitStatus | str, reason: str = "Manually forced") -> None:
        """Move the circuit to ``status`` and reset its counters."""
        status = CircuitStatus(status)
        self.failure_count = 0
        self.success_count = 0
        self.half_open_in_flight = 0
        self.consecutive_rate_limits = 0
        if status is CircuitStatus.OPEN:
            self.cooldown_ends_at = self._clock() + self.config.reset_timeout
        else:
            self.cooldown_ends_at = None
        self._transition(status, reason)

    def reset(self) -> None:
        """Return to a fresh CLOSED state (history is kept)."""
        self.force_state(CircuitStatus.CLOSED, "Manual reset")
        self.total_requests = 0
        self.last_failure_at = None
        self._last_decay_at = None

    def snapshot(self) -> CircuitState:
        now = self._clock()
        remaining = 0.0
        if self._status is CircuitStatus.OPEN and self.cooldown_ends_at is not None:
            remaining = max(0.0, self.cooldown_ends_at - now)
        return CircuitState(
            name=self.name,
            status=self._status,
            failure_count=self.failure_count,
            success_count=self.success_count,
            total_requests=self.total_requests,
            last_failure_at=self.last_failure_at,
            last_success_at=self.last_success_at,
            cooldown_ends_at=self.cooldown_ends_at,
            cooldown_remaining_s=remaining,
            consecutive_rate_limits=self.consecutive_rate_limits,
            half_open_in_flight=self.half_open_in_flight,
            history=list(self._history)[-HISTORY_REPORTED:],
        )

    @property
    def history(self) -> list[StateTransition]:
        return list(self._history)

    # --- internals ---

    def _release(self, is_probe: bool) -> None:
        if is_probe and self.half_open_in_flight > 0:
            self.half_open_in_flight -= 1

    def _open(self, cooldown: float, reason: str) -> None:
        self.cooldown_ends_at = self._clock() + cooldown
        self.success_count = 0
        self.half_open_in_flight = 0
        self._transition(CircuitStatus.OPEN, reason)

    def _close(self, reason: str) -> None:
        self.failure_count = 0
        self.success_count = 0
        self.half_open_in_flight = 0
        self.cooldown_ends_at = None
        self._last_decay_at = None
        self._transition(CircuitStatus.CLOSED, reason)

    def _transition(self, status: CircuitStatus, reason: str) -> None:
        if status is self._status:
            return
        previous = self._status
        self._status = status
        if status is not CircuitStatus.HALF_OPEN:
            self.success_count = 0
        self._record(status, reason)
        log = logger.warning if status is CircuitStatus.OPEN else logger.info
        log("%s: circuit %s -> %s (%s)", self.name, previous.value, status.value, reason)

    def _record(self, status: CircuitStatus, reason: str) -> None:
        self._history.append(
            StateTransition(timestamp=self._clock(), status=status, reason=reason)
        )


class CircuitBreakerRegistry:
    """Lazily creates one CircuitBreaker per service name.

    Args:
        config: Default options for every breaker.
        overrides: Per-name options replacing the default.
        clock: Time source shared by every breaker.
    """

    def __init__(
        self,
        config: BreakerConfig | None = None,
        overrides: dict[str, BreakerConfig] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or BreakerConfig()
        self._overrides = dict(overrides or {})
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}
        self._health_task = PeriodicTask(
            "circuit-health", self.config.health_check_interval, self.health_check
        )

    def get(self, name: str) -> CircuitBreaker:
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(
                name, self._overrides.get(name, self.config), clock=self._clock
            )
            self._breakers[name] = breaker
        return breaker

    def __contains__(self, name: object) -> bool:
        return name in self._breakers

    @property
    def names(self) -> list[str]:
        return list(self._breakers)

    def start(self) -> None:
        self._health_task.start()

    async def stop(self) -> None:
        await self._health_task.stop()

    def health_check(self) -> None:
        for breaker in list(self._breakers.values()):
            breaker.health_check()

    def is_healthy(self, name: str) -> bool:
        """Whether calls to ``name`` would be admitted right now."""
        breaker = self._breakers.get(name)
        return breaker is None or breaker.is_available()

    def reset(self, name: str | None = None) -> None:
        """Reset one breaker, or all of them when name is None."""
        targets = [self.get(name)] if name is not None else list(self._breakers.values())
        for breaker in targets:
            breaker.reset()

    def get_status(self) -> dict[str, CircuitState]:
        return {name: breaker.snapshot() for name, breaker in self._breakers.items()}
