# src/api/facade.py — v3
"""Public API facade: composition root for the relay.

Usage:
    from llmrelay.api.facade import RelayService
    async with RelayService() as relay:
        answer = await relay.ask("latest news on fusion power")
        status = relay.get_status()

Every component is an explicit instance owned by one RelayService, so tests
can build isolated services with fake clients, probes and clocks.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from llmrelay.api.models import AskRequest, RelayStatus
from llmrelay.cache.cache_factory import create_cache
from llmrelay.config.settings import Settings, load_settings
from llmrelay.llm.base_client import BaseLLMClient
from llmrelay.llm.client_factory import create_service_clients
from llmrelay.monitor.leak_detector import MemoryLeakDetector
from llmrelay.monitor.probe import ProcessProbe, ResourceProbe
from llmrelay.monitor.resource_manager import ResourceManager
from llmrelay.resilience.circuit_breaker import CircuitBreakerRegistry
from llmrelay.routing.models import RoutedResponse
from llmrelay.routing.router import ServiceRouter

logger = logging.getLogger(__name__)


class RelayService:
    """Wire breakers, cache, monitor and router from Settings.

    Args:
        settings: Global settings. Loaded from .env if None.
        clients: Upstream clients by service name. Built from settings if None.
        probe: Resource probe for the monitor. psutil-backed if None.
        clock: Monotonic time source for breakers and cache.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        clients: dict[str, BaseLLMClient] | None = None,
        probe: ResourceProbe | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or load_settings()
        self.breakers = CircuitBreakerRegistry(self.settings.breaker_config(), clock=clock)
        self.cache = create_cache(self.settings, clock=clock)
        self.router = ServiceRouter(
            clients if clients is not None else create_service_clients(self.settings),
            self.breakers,
            cache=self.cache,
            request_timeout=self.settings.request_timeout,
            max_tokens=self.settings.llm_max_tokens,
            temperature=self.settings.llm_temperature,
        )

        self.probe: ResourceProbe | None = None
        self.leak_detector: MemoryLeakDetector | None = None
        self.resource_manager: ResourceManager | None = None
        if self.settings.monitor_enabled:
            monitor_config = self.settings.monitor_config()
            self.probe = probe or ProcessProbe()
            self.leak_detector = MemoryLeakDetector(monitor_config, probe=self.probe)
            self.resource_manager = ResourceManager(
                monitor_config,
                probe=self.probe,
                caches=[self.cache] if self.cache is not None else [],
            )
            self.resource_manager.add_listener(
                lambda conn: self.router.apply_resource_factor(conn.resource_factor)
            )
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start every background loop (idempotent)."""
        if self._running:
            return
        if self.probe is not None:
            self.probe.reset_baseline()
        self.breakers.start()
        if self.cache is not None:
            self.cache.start()
        if self.leak_detector is not None:
            self.leak_detector.start()
        if self.resource_manager is not None:
            self.resource_manager.start()
        self._running = True
        logger.info("Relay service started")

    async def stop(self) -> None:
        """Cancel and await every background loop (idempotent)."""
        if not self._running:
            return
        await self.breakers.stop()
        if self.cache is not None:
            await self.cache.stop()
        if self.leak_detector is not None:
            await self.leak_detector.stop()
        if self.resource_manager is not None:
            await self.resource_manager.stop()
        self._running = False
        logger.info("Relay service stopped")

    async def __aenter__(self) -> RelayService:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    async def ask(
        self,
        query: str | AskRequest,
        preferred_service: str | None = None,
        force_deep_research: bool = False,
        skip_cache: bool = False,
        system_prompt: str | None = None,
    ) -> RoutedResponse:
        """Route one query.

        Raises:
            ValueError: If the query is empty.
            RoutingError: No service could answer.
        """
        if isinstance(query, AskRequest):
            request = query
        else:
            request = AskRequest(
                query=query,
                preferred_service=preferred_service,
                force_deep_research=force_deep_research,
                skip_cache=skip_cache,
                system_prompt=system_prompt,
            )
        if not request.query.strip():
            raise ValueError("Query must not be empty")
        return await self.router.route_query(
            request.query,
            preferred_service=request.preferred_service,
            force_deep_research=request.force_deep_research,
            skip_cache=request.skip_cache,
            system_prompt=request.system_prompt,
        )

    def get_status(self) -> RelayStatus:
        return RelayStatus(
            running=self._running,
            circuits=self.breakers.get_status(),
            cache=self.cache.get_stats() if self.cache is not None else None,
            memory=self.leak_detector.get_status() if self.leak_detector else None,
            resources=self.resource_manager.get_status() if self.resource_manager else None,
            router=self.router.get_status(),
        )
