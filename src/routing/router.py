# src/routing/router.py — v2
"""Service router: pick an upstream for a query, cache it, fall back once.

Route precedence:
  1. explicit preferred service
  2. chart intent            -> claude / chart
  3. internet intent         -> perplexity / search, or deep_research when
                                deep-research patterns match or it is forced
  4. default                 -> claude / chat

Each route runs through the service's ResilientClient and the shared
SimilarityCache (key "service:mode:query"). When the chosen service fails
with an error tagged with its name, and the other service is healthy both
in the router's own health table and in its circuit breaker, the query is
retried once there (chat mode on claude, search mode on perplexity).

A forced deep research request only changes the mode of a perplexity route
(preferred or internet); on its own it does not pull a query off claude.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any

from llmrelay.cache.similarity_cache import SimilarityCache
from llmrelay.core.errors import CacheFactoryError, RelayError, RoutingError
from llmrelay.llm.base_client import BaseLLMClient
from llmrelay.llm.models import LLMResponse, Message
from llmrelay.logging.context import new_request_context, set_route_context
from llmrelay.resilience.circuit_breaker import CircuitBreakerRegistry
from llmrelay.resilience.client import ResilientClient
from llmrelay.routing.classifier import classify_query
from llmrelay.routing.models import QueryIntent, RouteDecision, RoutedResponse, RouterStatus

logger = logging.getLogger(__name__)

CLAUDE = "claude"
PERPLEXITY = "perplexity"

FALLBACK_MODES = {CLAUDE: "chat", PERPLEXITY: "search"}


class ServiceRouter:
    """Route queries between Claude and Perplexity.

    Args:
        clients: Upstream clients keyed by service name.
        breakers: Registry providing one circuit breaker per service.
        cache: Shared response cache, or None to disable caching.
        request_timeout: Per-call timeout; defaults to each breaker's.
        cache_ttl: TTL for cached responses; defaults to the cache's.
        max_tokens: Completion budget forwarded to the clients.
        temperature: Sampling temperature forwarded to the clients.
    """

    def __init__(
        self,
        clients: dict[str, BaseLLMClient],
        breakers: CircuitBreakerRegistry,
        cache: SimilarityCache | None = None,
        request_timeout: float | None = None,
        cache_ttl: float | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.2,
    ) -> None:
        missing = {CLAUDE, PERPLEXITY} - set(clients)
        if missing:
            raise ValueError(f"Missing clients for: {', '.join(sorted(missing))}")
        self._clients = dict(clients)
        self.breakers = breakers
        self.cache = cache
        self._cache_ttl = cache_ttl
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._resilient = {
            name: ResilientClient(name, breakers.get(name), request_timeout)
            for name in self._clients
        }
        self.service_health: dict[str, bool] = {name: True for name in self._clients}
        self._decisions: Counter[str] = Counter()
        self._routes: Counter[str] = Counter()
        self._requests = 0
        self._cache_hits = 0
        self._fallbacks = 0
        self._failures = 0

    # --- selection ---

    def classify(self, query: str) -> QueryIntent:
        return classify_query(query)

    def select_route(
        self,
        query: str,
        preferred_service: str | None = None,
        force_deep_research: bool = False,
    ) -> RouteDecision:
        """Pick service and mode for a query without calling anything."""
        intent = self.classify(query)
        deep = force_deep_research or intent.needs_deep_research

        if preferred_service is not None:
            if preferred_service not in self._clients:
                raise ValueError(f"Unknown service: {preferred_service!r}")
            if preferred_service == PERPLEXITY:
                mode = "deep_research" if deep else "search"
            else:
                mode = "chat"
            return RouteDecision(
                service=preferred_service, mode=mode,
                reason="explicit preference", intent=intent,
            )

        if intent.needs_chart:
            return RouteDecision(
                service=CLAUDE, mode="chart", reason="chart generation", intent=intent
            )

        if intent.needs_internet:
            return RouteDecision(
                service=PERPLEXITY,
                mode="deep_research" if deep else "search",
                reason="needs internet access",
                intent=intent,
            )

        return RouteDecision(service=CLAUDE, mode="chat", reason="default", intent=intent)

    # --- routing ---

    async def route_query(
        self,
        query: str,
        preferred_service: str | None = None,
        force_deep_research: bool = False,
        skip_cache: bool = False,
        system_prompt: str | None = None,
    ) -> RoutedResponse:
        """Answer a query on the selected service, falling back once.

        Raises:
            RoutingError: The selected service failed and no fallback
                was possible, or the fallback failed too.
        """
        request_id = new_request_context()
        decision = self.select_route(query, preferred_service, force_deep_research)
        self._requests += 1
        self._decisions[decision.intent.label] += 1
        logger.info(
            "Routing to %s/%s (%s)", decision.service, decision.mode, decision.reason
        )

        try:
            result = await self._dispatch(query, decision, skip_cache, system_prompt)
        except RelayError as exc:
            if exc.source_service != decision.service:
                self._failures += 1
                raise RoutingError(exc) from exc
            result = await self._fall_back(query, decision, exc, skip_cache, system_prompt)

        result.request_id = request_id
        return result

    def apply_resource_factor(self, factor: float) -> None:
        """Scale every upstream request timeout by the current resource factor."""
        for resilient in self._resilient.values():
            resilient.scale_timeout(factor)
        logger.debug("Upstream timeouts scaled by %.2f", factor)

    def get_status(self) -> RouterStatus:
        return RouterStatus(
            service_health=dict(self.service_health),
            decisions=dict(self._decisions),
            routes=dict(self._routes),
            requests=self._requests,
            cache_hits=self._cache_hits,
            fallbacks=self._fallbacks,
            failures=self._failures,
        )

    # --- internals ---

    def _alternate(self, service: str) -> str:
        return PERPLEXITY if service == CLAUDE else CLAUDE

    async def _fall_back(
        self,
        query: str,
        decision: RouteDecision,
        error: RelayError,
        skip_cache: bool,
        system_prompt: str | None,
    ) -> RoutedResponse:
        failed = decision.service
        alternate = self._alternate(failed)
        if not (self.service_health.get(alternate) and self.breakers.is_healthy(alternate)):
            self._failures += 1
            logger.error("%s failed and %s is unavailable: %s", failed, alternate, error)
            raise RoutingError(error) from error

        self.service_health[failed] = False
        self._fallbacks += 1
        logger.warning("Falling back to %s after %s error: %s", alternate, failed, error)
        fallback = RouteDecision(
            service=alternate,
            mode=FALLBACK_MODES[alternate],
            reason=f"fallback after {failed} failure",
            intent=decision.intent,
        )
        try:
            result = await self._dispatch(query, fallback, skip_cache, system_prompt)
        except RelayError as fallback_exc:
            self._failures += 1
            raise RoutingError(error, fallback_exc) from fallback_exc

        result.fallback_used = True
        result.failed_service = failed
        return result

    async def _dispatch(
        self,
        query: str,
        decision: RouteDecision,
        skip_cache: bool,
        system_prompt: str | None,
    ) -> RoutedResponse:
        service, mode = decision.service, decision.mode
        set_route_context(service, mode)
        self._routes[f"{service}:{mode}"] += 1
        client = self._clients[service]
        resilient = self._resilient[service]

        async def fetch() -> LLMResponse:
            response = await resilient.call(
                client.complete,
                [Message(role="user", content=query)],
                system=system_prompt,
                mode=mode,
                max_tokens=self._max_tokens,
                temperature=self._temperature,
            )
            self.service_health[service] = True
            return response

        key = decision.cache_key(query)
        if self.cache is None or skip_cache:
            response = await fetch()
            if self.cache is not None:
                self.cache.set(key, response, self._cache_ttl)
            return self._to_result(response, decision)

        try:
            lookup = await self.cache.get_or_create(
                key, fetch, self._cache_ttl, scope=decision.cache_scope
            )
        except CacheFactoryError as exc:
            # Surface the tagged upstream error rather than the cache wrapper
            if isinstance(exc.original, RelayError):
                raise exc.original
            raise

        if lookup.cached:
            self._cache_hits += 1
            logger.debug("Cache %s for %s/%s", lookup.source, service, mode)
        return self._to_result(
            lookup.value, decision,
            cached=lookup.cached, source=lookup.source, similarity=lookup.similarity,
        )

    @staticmethod
    def _to_result(
        response: Any,
        decision: RouteDecision,
        cached: bool = False,
        source: Any = None,
        similarity: float | None = None,
    ) -> RoutedResponse:
        content = response.content if isinstance(response, LLMResponse) else str(response)
        return RoutedResponse(
            content=content,
            service=decision.service,
            mode=decision.mode,
            cached=cached,
            cache_source=source,
            similarity=similarity,
            response=response,
        )
