# src/monitor/models.py — v2
"""Resource monitoring models: samples, leak checks, pools, status."""

from __future__ import annotations

from pydantic import BaseModel

BYTES_PER_MB = 1024 * 1024


class ResourceSample(BaseModel):
    """One process memory sample.

    growth_bytes is heap usage above the probe baseline; pressure thresholds
    compare against it. rss_bytes / external_bytes are omitted in
    resource-saving mode.
    """

    timestamp_ms: int
    label: str = "sample"
    heap_used_bytes: int
    heap_total_bytes: int
    growth_bytes: int = 0
    rss_bytes: int | None = None
    external_bytes: int | None = None

    @property
    def heap_used_mb(self) -> float:
        return self.heap_used_bytes / BYTES_PER_MB

    @property
    def heap_total_mb(self) -> float:
        return self.heap_total_bytes / BYTES_PER_MB

    @property
    def growth_mb(self) -> float:
        return self.growth_bytes / BYTES_PER_MB


class LeakCheckResult(BaseModel):
    """Outcome of one MemoryLeakDetector.check_memory() pass."""

    sample: ResourceSample
    growth_pct: float = 0.0
    window_growth_pct: float = 0.0
    trend_mb_per_hour: float = 0.0
    consecutive_growth: int = 0
    leak_detected: bool = False
    gc_triggered: bool = False
    gc_freed_bytes: int = 0


class LeakDetectorStatus(BaseModel):
    is_monitoring: bool = False
    resource_saving_mode: bool = True
    samples: int = 0
    max_samples: int = 0
    leaks_detected: int = 0
    consecutive_growth: int = 0
    latest: ResourceSample | None = None
    window_growth_pct: float = 0.0
    trend_mb_per_hour: float = 0.0
    gc_runs: int = 0
    last_gc_freed_bytes: int = 0
    total_gc_freed_bytes: int = 0
    recommendations: list[str] = []


class ConnectionSettings(BaseModel):
    """Connection pool limits scaled by the current resource factor."""

    pool_size: int
    timeout_s: float
    idle_timeout_s: float
    resource_factor: float


class PoolStats(BaseModel):
    pools: int = 0
    total_connections: int = 0
    active_connections: int = 0
    idle_connections: int = 0
    utilization: float = 0.0


class ResourceCheckResult(BaseModel):
    """Outcome of one ResourceManager.check_resources() pass."""

    heap_used_mb: float
    cpu_percent: float
    memory_percent: float
    resource_factor: float
    heap_growth_mb: float = 0.0
    over_threshold: bool = False
    forced_cleanup: bool = False


class ResourceManagerStatus(BaseModel):
    is_active: bool = False
    heap_used_mb: float = 0.0
    heap_growth_mb: float = 0.0
    rss_mb: float | None = None
    memory_threshold_mb: float = 0.0
    cpu_threshold: float = 0.0
    last_check: ResourceCheckResult | None = None
    connection_settings: ConnectionSettings | None = None
    connections: PoolStats = PoolStats()
    forced_cleanups: int = 0
    is_overloaded: bool = False
