# src/core/errors.py — v1
"""Error taxonomy for the request path and the monitoring path.

Request-path errors (circuit, timeout, upstream, routing) always propagate to
the caller. Monitoring-path errors (ResourceCheckError) are logged and
swallowed by the monitor that raised them.

Every upstream-related error carries ``source_service`` so the router can pick
a fallback without parsing messages.
"""

from __future__ import annotations

SERVICE_UNAVAILABLE_MESSAGE = "Service temporarily unavailable, please retry."


class RelayError(Exception):
    """Base class for all llmrelay errors."""

    source_service: str | None = None


class CircuitOpenError(RelayError):
    """Fast-fail: the circuit for a service is OPEN (no network call made)."""

    def __init__(self, service: str, retry_after_s: float = 0.0) -> None:
        self.source_service = service
        self.retry_after_s = max(0.0, retry_after_s)
        super().__init__(
            f"Service '{service}' is unavailable (circuit breaker open, "
            f"retry in {self.retry_after_s:.1f}s)"
        )


class UpstreamTimeoutError(RelayError):
    """The wrapped call exceeded the configured request timeout."""

    def __init__(self, service: str, timeout_s: float) -> None:
        self.source_service = service
        self.timeout_s = timeout_s
        super().__init__(f"Service '{service}' timed out after {timeout_s:.1f}s")


class UpstreamFailureError(RelayError):
    """The wrapped call failed for any reason other than a timeout.

    The original exception is kept on ``original`` and chained as
    ``__cause__`` so callers can inspect provider-specific details.
    """

    def __init__(
        self,
        service: str,
        original: BaseException,
        status_code: int | None = None,
    ) -> None:
        self.source_service = service
        self.original = original
        self.status_code = status_code
        status = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"Service '{service}' call failed{status}: {original}")

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429


class CacheFactoryError(RelayError):
    """A get_or_create factory raised; the failed value is never cached."""

    def __init__(self, key: str, original: BaseException) -> None:
        self.key = key
        self.original = original
        preview = key if len(key) <= 60 else key[:60] + "..."
        super().__init__(f"Cache factory failed for key '{preview}': {original}")


class ResourceCheckError(RelayError):
    """Internal failure while sampling or cleaning up resources."""

    def __init__(self, operation: str, original: BaseException) -> None:
        self.operation = operation
        self.original = original
        super().__init__(f"Resource check '{operation}' failed: {original}")


class RoutingError(RelayError):
    """Both the selected service and its fallback failed."""

    def __init__(
        self,
        primary: BaseException,
        fallback: BaseException | None = None,
    ) -> None:
        self.primary = primary
        self.fallback = fallback
        self.source_service = getattr(primary, "source_service", None)
        message = f"Failed to route query to any available service: {primary}"
        if fallback is not None:
            message += f"; fallback also failed: {fallback}"
        super().__init__(message)


def extract_status_code(error: BaseException) -> int | None:
    """Best-effort HTTP status extraction from SDK and httpx errors."""
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(error, "response", None)
    if response is not None:
        value = getattr(response, "status_code", None)
        if isinstance(value, int):
            return value
    return None


def is_service_unavailable(error: BaseException) -> bool:
    """Whether an error should surface as 'temporarily unavailable'."""
    return isinstance(
        error,
        (CircuitOpenError, UpstreamTimeoutError, UpstreamFailureError, RoutingError),
    )


def user_message(error: BaseException) -> str:
    """Map an error to the message shown at the edge of the system."""
    if is_service_unavailable(error):
        return SERVICE_UNAVAILABLE_MESSAGE
    return f"Request failed: {error}"
