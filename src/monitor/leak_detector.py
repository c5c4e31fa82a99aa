# src/monitor/leak_detector.py — v2
"""Memory leak detection from periodic process memory samples.

Each check appends a sample to a bounded ring buffer and compares it with
the previous one. Growth above ``growth_threshold`` percent for
``consecutive_growth_limit`` checks in a row flags a potential leak; the
counter then resets (and also resets as soon as growth subsides).
Window growth (oldest to newest sample) and a least-squares trend are
reported alongside.

Independently, when heap growth above the probe baseline exceeds
``gc_trigger_threshold_mb`` and ``min_gc_interval`` has elapsed since the
last forced collection, a full ``gc.collect()`` runs and the freed bytes are
recorded.

Monitoring must never crash the host: every error is logged and swallowed.
"""

from __future__ import annotations

import gc
import logging
import time
from collections import deque
from typing import Callable

import numpy as np

from llmrelay.config.settings import MonitorConfig
from llmrelay.core.errors import ResourceCheckError
from llmrelay.core.scheduler import PeriodicTask
from llmrelay.monitor.models import (
    BYTES_PER_MB,
    LeakCheckResult,
    LeakDetectorStatus,
    ResourceSample,
)
from llmrelay.monitor.probe import ProcessProbe, ResourceProbe

logger = logging.getLogger(__name__)

RESOURCE_SAVING_MAX_SAMPLES = 20

LEAK_RECOMMENDATIONS = [
    "Check for caches or registries that grow without bound",
    "Look for tasks or callbacks that are never cancelled",
    "Inspect long-lived references held by closures or globals",
    "Compare tracemalloc snapshots taken before and after the growth",
]


def growth_percent(before: int, after: int) -> float:
    """Percentage change from before to after (0 when before is 0)."""
    if before <= 0:
        return 0.0
    return (after - before) / before * 100.0


def trend_mb_per_hour(samples: list[ResourceSample]) -> float:
    """Least-squares slope of heap usage over time, in MB per hour."""
    if len(samples) < 3:
        return 0.0
    seconds = np.array([s.timestamp_ms / 1000.0 for s in samples])
    heap_mb = np.array([s.heap_used_bytes / BYTES_PER_MB for s in samples])
    if np.ptp(seconds) == 0:
        return 0.0
    slope, _ = np.polyfit(seconds - seconds[0], heap_mb, 1)
    return float(slope * 3600.0)


class MemoryLeakDetector:
    """Sample process memory and flag sustained growth.

    Args:
        config: Monitor options.
        probe: Memory source. Defaults to a psutil ProcessProbe.
        clock: Wall-clock source in seconds (sample timestamps, GC spacing).
        collect: Garbage collector entry point.
    """

    def __init__(
        self,
        config: MonitorConfig | None = None,
        probe: ResourceProbe | None = None,
        clock: Callable[[], float] = time.time,
        collect: Callable[[], int] = gc.collect,
    ) -> None:
        self.config = config or MonitorConfig()
        self._probe = probe or ProcessProbe()
        self._clock = clock
        self._collect = collect

        self.max_samples = (
            RESOURCE_SAVING_MAX_SAMPLES if self.config.resource_saving_mode
            else self.config.max_samples
        )
        self._samples: deque[ResourceSample] = deque(maxlen=self.max_samples)
        self.consecutive_growth = 0
        self.leaks_detected = 0
        self.gc_runs = 0
        self.last_gc_at: float | None = None
        self.last_gc_freed_bytes = 0
        self.total_gc_freed_bytes = 0
        self._recommendations: list[str] = []
        self._task = PeriodicTask(
            "memory-leak-detector", self.config.sample_interval, self.check_memory
        )

    @property
    def is_monitoring(self) -> bool:
        return self._task.is_running

    @property
    def samples(self) -> list[ResourceSample]:
        return list(self._samples)

    def start(self) -> None:
        if self.is_monitoring:
            return
        logger.info(
            "Starting memory leak detection (every %.0fs, growth threshold %.0f%%)",
            self.config.sample_interval, self.config.growth_threshold,
        )
        self._safe_sample("baseline")
        self._task.start()

    async def stop(self) -> None:
        if not self.is_monitoring:
            return
        await self._task.stop()
        logger.info("Stopped memory leak detection")
        if self.config.resource_saving_mode:
            self._samples.clear()

    def take_sample(self, label: str = "sample") -> ResourceSample:
        """Read process memory and append it to the ring buffer."""
        reading = self._probe.memory()
        saving = self.config.resource_saving_mode
        sample = ResourceSample(
            timestamp_ms=int(self._clock() * 1000),
            label=label,
            heap_used_bytes=reading.heap_used_bytes,
            heap_total_bytes=reading.heap_total_bytes,
            growth_bytes=reading.growth_bytes,
            rss_bytes=None if saving else reading.rss_bytes,
            external_bytes=None if saving else reading.external_bytes,
        )
        self._samples.append(sample)
        return sample

    def check_memory(self) -> LeakCheckResult | None:
        """Take a sample and evaluate growth and GC triggers.

        Returns:
            The check outcome, or None if sampling failed (error is logged).
        """
        try:
            return self._check()
        except Exception as exc:
            logger.error("%s", ResourceCheckError("memory check", exc))
            return None

    def get_status(self) -> LeakDetectorStatus:
        samples = list(self._samples)
        window = growth_percent(
            samples[0].heap_used_bytes, samples[-1].heap_used_bytes
        ) if len(samples) >= 2 else 0.0
        return LeakDetectorStatus(
            is_monitoring=self.is_monitoring,
            resource_saving_mode=self.config.resource_saving_mode,
            samples=len(samples),
            max_samples=self.max_samples,
            leaks_detected=self.leaks_detected,
            consecutive_growth=self.consecutive_growth,
            latest=samples[-1] if samples else None,
            window_growth_pct=window,
            trend_mb_per_hour=trend_mb_per_hour(samples),
            gc_runs=self.gc_runs,
            last_gc_freed_bytes=self.last_gc_freed_bytes,
            total_gc_freed_bytes=self.total_gc_freed_bytes,
            recommendations=list(self._recommendations),
        )

    # --- internals ---

    def _check(self) -> LeakCheckResult:
        sample = self.take_sample("check")
        samples = list(self._samples)
        result = LeakCheckResult(sample=sample)

        if len(samples) >= 2:
            result.growth_pct = growth_percent(
                samples[-2].heap_used_bytes, sample.heap_used_bytes
            )
            result.window_growth_pct = growth_percent(
                samples[0].heap_used_bytes, sample.heap_used_bytes
            )
            result.trend_mb_per_hour = trend_mb_per_hour(samples)

            if result.growth_pct > self.config.growth_threshold:
                self.consecutive_growth += 1
                if self.consecutive_growth >= self.config.consecutive_growth_limit:
                    self._flag_leak(result)
                    self.consecutive_growth = 0
            elif self.consecutive_growth:
                logger.info(
                    "Memory growth subsided (%.1f%%) after %d growing samples",
                    result.growth_pct, self.consecutive_growth,
                )
                self.consecutive_growth = 0
        result.consecutive_growth = self.consecutive_growth

        logger.debug(
            "Memory check: heap %.1fMB, growth %.1f%%, window %.1f%%",
            sample.heap_used_mb, result.growth_pct, result.window_growth_pct,
        )

        if self._gc_due(sample):
            result.gc_triggered = True
            result.gc_freed_bytes = self._force_gc(sample)
        return result

    def _flag_leak(self, result: LeakCheckResult) -> None:
        self.leaks_detected += 1
        result.leak_detected = True
        self._recommendations = list(LEAK_RECOMMENDATIONS)
        logger.warning(
            "Potential memory leak: heap grew >%.0f%% for %d consecutive samples "
            "(now %.1fMB, window %+.1f%%, trend %+.2fMB/h). Recommendations: %s",
            self.config.growth_threshold, self.config.consecutive_growth_limit,
            result.sample.heap_used_mb, result.window_growth_pct,
            result.trend_mb_per_hour, "; ".join(LEAK_RECOMMENDATIONS),
        )

    def _gc_due(self, sample: ResourceSample) -> bool:
        if sample.growth_mb <= self.config.gc_trigger_threshold_mb:
            return False
        if self.last_gc_at is None:
            return True
        return self._clock() - self.last_gc_at >= self.config.min_gc_interval

    def _force_gc(self, sample: ResourceSample) -> int:
        logger.info(
            "Heap grew %.1fMB above baseline (limit %.0fMB), forcing garbage collection",
            sample.growth_mb, self.config.gc_trigger_threshold_mb,
        )
        collected = self._collect()
        after = self._probe.memory().heap_used_bytes
        freed = max(0, sample.heap_used_bytes - after)
        self.gc_runs += 1
        self.last_gc_at = self._clock()
        self.last_gc_freed_bytes = freed
        self.total_gc_freed_bytes += freed
        logger.info(
            "Garbage collection freed %.1fMB (%d objects)", freed / BYTES_PER_MB, collected
        )
        return freed

    def _safe_sample(self, label: str) -> None:
        try:
            self.take_sample(label)
        except Exception as exc:
            logger.error("%s", ResourceCheckError(f"sample '{label}'", exc))
