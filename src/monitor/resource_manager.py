# src/monitor/resource_manager.py — v2
"""Resource pressure management: pool sizing, forced cleanup, idle pools.

resource_factor = 0.4 * cpu_factor + 0.6 * memory_factor, where each factor
is max(0.3, 1 - pressure). Pool size and timeouts scale by the factor, so
the system throttles under pressure but never starves completely. Every
rescale is pushed to the registered listeners (the relay scales its
upstream request timeouts with it).

Memory pressure is heap growth above the probe baseline, not absolute
usage. When growth exceeds 1.5x ``memory_threshold_mb`` every registered
cache is evicted under memory pressure and a GC pass runs immediately.

All checks are best-effort: errors are logged and swallowed.
"""

from __future__ import annotations

import gc
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from llmrelay.config.settings import MonitorConfig
from llmrelay.core.errors import ResourceCheckError
from llmrelay.core.scheduler import PeriodicTask
from llmrelay.monitor.models import (
    BYTES_PER_MB,
    ConnectionSettings,
    PoolStats,
    ResourceCheckResult,
    ResourceManagerStatus,
)
from llmrelay.monitor.probe import ProcessProbe, ResourceProbe

logger = logging.getLogger(__name__)

CPU_WEIGHT = 0.4
MEMORY_WEIGHT = 0.6
MIN_FACTOR = 0.3
FORCED_CLEANUP_MULTIPLIER = 1.5
OVERLOAD_UTILIZATION = 0.9


class EvictableCache(Protocol):
    """The slice of a cache the manager drives (one-way dependency)."""

    def evict_for_memory_pressure(self, reason: str = ...) -> int: ...

    def remove_expired(self) -> int: ...


@dataclass
class PooledConnection:
    """Bookkeeping for one pooled connection.

    ``resource`` is whatever the pool's factory produced; it is closed on
    idle cleanup when it has a ``close()`` method.
    """

    id: str
    pool: str
    created_at: float
    last_used: float
    in_use: bool = True
    resource: Any = None

    def close(self) -> None:
        closer = getattr(self.resource, "close", None)
        if callable(closer):
            closer()


@dataclass
class ConnectionPool:
    name: str
    max_size: int
    connections: list[PooledConnection] = field(default_factory=list)
    created: int = 0

    @property
    def active(self) -> int:
        return sum(1 for conn in self.connections if conn.in_use)


def compute_resource_factor(cpu_percent: float, memory_percent: float) -> float:
    """Blend CPU and memory pressure into a 0.3..1.0 throttle factor.

    Args:
        cpu_percent: CPU usage, 0-100.
        memory_percent: Memory usage relative to its budget, 0-100.
    """
    cpu_pressure = min(max(cpu_percent, 0.0), 100.0) / 100.0
    memory_pressure = min(max(memory_percent, 0.0), 100.0) / 100.0
    cpu_factor = max(MIN_FACTOR, 1.0 - cpu_pressure)
    memory_factor = max(MIN_FACTOR, 1.0 - memory_pressure)
    return CPU_WEIGHT * cpu_factor + MEMORY_WEIGHT * memory_factor


class ResourceManager:
    """Periodic resource checks driving cache eviction and pool limits.

    Args:
        config: Monitor options.
        probe: Memory/CPU source. Defaults to a psutil ProcessProbe.
        caches: Caches to evict from under pressure.
        clock: Wall-clock source in seconds (pool bookkeeping).
        collect: Garbage collector entry point.
    """

    def __init__(
        self,
        config: MonitorConfig | None = None,
        probe: ResourceProbe | None = None,
        caches: list[EvictableCache] | None = None,
        clock: Callable[[], float] = time.time,
        collect: Callable[[], int] = gc.collect,
    ) -> None:
        self.config = config or MonitorConfig()
        self._probe = probe or ProcessProbe()
        self._caches: list[EvictableCache] = list(caches or [])
        self._clock = clock
        self._collect = collect

        self._pools: dict[str, ConnectionPool] = {}
        self._listeners: list[Callable[[ConnectionSettings], None]] = []
        self.connection_settings = self.optimize_connections(1.0)
        self.last_check: ResourceCheckResult | None = None
        self.forced_cleanups = 0
        self._check_task = PeriodicTask(
            "resource-check", self.config.check_interval, self.check_resources
        )
        self._cleanup_task = PeriodicTask(
            "resource-cleanup", self.config.cleanup_interval, self.cleanup
        )

    @property
    def is_active(self) -> bool:
        return self._check_task.is_running

    def register_cache(self, cache: EvictableCache) -> None:
        if cache not in self._caches:
            self._caches.append(cache)

    def add_listener(self, listener: Callable[[ConnectionSettings], None]) -> None:
        """Call listener with the new ConnectionSettings after every rescale."""
        self._listeners.append(listener)

    def start(self) -> None:
        if self.is_active:
            return
        logger.info(
            "Starting resource manager (memory threshold %.0fMB, cpu threshold %.0f%%)",
            self.config.memory_threshold_mb, self.config.cpu_threshold,
        )
        self._check_task.start()
        self._cleanup_task.start()

    async def stop(self) -> None:
        await self._check_task.stop()
        await self._cleanup_task.stop()

    # --- pressure ---

    def compute_resource_factor(self, cpu_percent: float, memory_percent: float) -> float:
        return compute_resource_factor(cpu_percent, memory_percent)

    def optimize_connections(self, resource_factor: float | None = None) -> ConnectionSettings:
        """Scale pool size and timeouts by the resource factor."""
        factor = 1.0 if resource_factor is None else resource_factor
        factor = min(1.0, max(MIN_FACTOR, factor))
        settings = ConnectionSettings(
            pool_size=max(1, round(self.config.pool_size * factor)),
            timeout_s=self.config.pool_timeout * factor,
            idle_timeout_s=self.config.pool_idle_timeout * factor,
            resource_factor=factor,
        )
        self.connection_settings = settings
        for pool in self._pools.values():
            pool.max_size = settings.pool_size
        for listener in self._listeners:
            try:
                listener(settings)
            except Exception as exc:
                logger.error("%s", ResourceCheckError("connection settings listener", exc))
        return settings

    def check_resources(self) -> ResourceCheckResult | None:
        """Sample usage, rescale pools and force cleanup under heavy pressure.

        Returns:
            The check outcome, or None if sampling failed (error is logged).
        """
        try:
            return self._check()
        except Exception as exc:
            logger.error("%s", ResourceCheckError("resource check", exc))
            return None

    def force_cleanup(self, reason: str) -> int:
        """Evict every registered cache under pressure and run a GC pass.

        Returns:
            Total cache entries evicted.
        """
        evicted = 0
        for cache in self._caches:
            try:
                evicted += cache.evict_for_memory_pressure(reason)
            except Exception as exc:
                logger.error("%s", ResourceCheckError("cache eviction", exc))
        collected = self._collect()
        self.forced_cleanups += 1
        logger.warning(
            "Forced cleanup (%s): evicted %d cache entries, collected %d objects",
            reason, evicted, collected,
        )
        return evicted

    # --- pools ---

    def get_connection(
        self, pool_name: str, factory: Callable[[], Any] | None = None
    ) -> PooledConnection | None:
        """Borrow an idle connection, or open one if the pool has room.

        Returns:
            The connection, or None when the pool is full.
        """
        pool = self._pools.get(pool_name)
        if pool is None:
            pool = ConnectionPool(pool_name, self.connection_settings.pool_size)
            self._pools[pool_name] = pool

        now = self._clock()
        for conn in pool.connections:
            if not conn.in_use:
                conn.in_use = True
                conn.last_used = now
                return conn

        if len(pool.connections) >= pool.max_size:
            logger.warning("Connection pool '%s' full (%d)", pool_name, pool.max_size)
            return None

        pool.created += 1
        conn = PooledConnection(
            id=f"{pool_name}-{pool.created}",
            pool=pool_name,
            created_at=now,
            last_used=now,
            resource=factory() if factory is not None else None,
        )
        pool.connections.append(conn)
        return conn

    def release_connection(self, pool_name: str, connection: PooledConnection) -> bool:
        """Return a borrowed connection. Returns False if it is unknown."""
        pool = self._pools.get(pool_name)
        if pool is None:
            logger.warning("Pool '%s' not found for connection release", pool_name)
            return False
        for conn in pool.connections:
            if conn.id == connection.id:
                conn.in_use = False
                conn.last_used = self._clock()
                return True
        logger.warning("Connection '%s' not found in pool '%s'", connection.id, pool_name)
        return False

    def cleanup(self) -> int:
        """Close idle connections, drop empty pools and purge expired cache entries.

        Returns:
            Number of idle connections closed.
        """
        closed = 0
        try:
            now = self._clock()
            idle_timeout = self.connection_settings.idle_timeout_s
            for name in list(self._pools):
                pool = self._pools[name]
                keep: list[PooledConnection] = []
                for conn in pool.connections:
                    if not conn.in_use and now - conn.last_used > idle_timeout:
                        conn.close()
                        closed += 1
                    else:
                        keep.append(conn)
                pool.connections = keep
                if not keep:
                    del self._pools[name]
            for cache in self._caches:
                cache.remove_expired()
        except Exception as exc:
            logger.error("%s", ResourceCheckError("cleanup", exc))
        if closed:
            logger.info("Closed %d idle connections", closed)
        return closed

    def pool_stats(self) -> PoolStats:
        total = sum(len(pool.connections) for pool in self._pools.values())
        active = sum(pool.active for pool in self._pools.values())
        return PoolStats(
            pools=len(self._pools),
            total_connections=total,
            active_connections=active,
            idle_connections=total - active,
            utilization=active / total if total else 0.0,
        )

    def get_status(self) -> ResourceManagerStatus:
        heap_used_mb = 0.0
        growth_mb = 0.0
        rss_mb: float | None = None
        try:
            reading = self._probe.memory()
            heap_used_mb = reading.heap_used_bytes / BYTES_PER_MB
            growth_mb = reading.growth_bytes / BYTES_PER_MB
            rss_mb = reading.rss_bytes / BYTES_PER_MB
        except Exception as exc:
            logger.error("%s", ResourceCheckError("status", exc))
        pools = self.pool_stats()
        return ResourceManagerStatus(
            is_active=self.is_active,
            heap_used_mb=heap_used_mb,
            heap_growth_mb=growth_mb,
            rss_mb=rss_mb,
            memory_threshold_mb=self.config.memory_threshold_mb,
            cpu_threshold=self.config.cpu_threshold,
            last_check=self.last_check,
            connection_settings=self.connection_settings,
            connections=pools,
            forced_cleanups=self.forced_cleanups,
            is_overloaded=(
                growth_mb > self.config.memory_threshold_mb
                or pools.utilization > OVERLOAD_UTILIZATION
            ),
        )

    # --- internals ---

    def _check(self) -> ResourceCheckResult:
        reading = self._probe.memory()
        cpu = self._probe.cpu_percent()
        heap_used_mb = reading.heap_used_bytes / BYTES_PER_MB
        growth_mb = reading.growth_bytes / BYTES_PER_MB
        threshold = self.config.memory_threshold_mb
        memory_percent = min(100.0, growth_mb / threshold * 100.0)

        factor = self.compute_resource_factor(cpu, memory_percent)
        self.optimize_connections(factor)

        result = ResourceCheckResult(
            heap_used_mb=heap_used_mb,
            cpu_percent=cpu,
            memory_percent=memory_percent,
            resource_factor=factor,
            heap_growth_mb=growth_mb,
            over_threshold=growth_mb > threshold,
        )
        logger.debug(
            "Resource check: heap %.1fMB (+%.1fMB), cpu %.1f%%, factor %.2f",
            heap_used_mb, growth_mb, cpu, factor,
        )
        if cpu > self.config.cpu_threshold:
            logger.warning("CPU usage %.1f%% above %.0f%%", cpu, self.config.cpu_threshold)

        hard_limit = threshold * FORCED_CLEANUP_MULTIPLIER
        if growth_mb > hard_limit:
            self.force_cleanup(f"heap grew {growth_mb:.1f}MB, above {hard_limit:.0f}MB")
            result.forced_cleanup = True
        elif result.over_threshold:
            logger.warning(
                "Memory threshold exceeded: heap grew %.1fMB > %.0fMB", growth_mb, threshold
            )
            self._collect()

        self.last_check = result
        return result
