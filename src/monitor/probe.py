# src/monitor/probe.py — v2
"""Process resource probe backed by psutil.

The interpreter exposes no separate heap figure, so the probe reports the resident set
as ``heap_used`` and the virtual size as ``heap_total``. ``external`` is the
shared memory psutil reports on platforms that expose it.

A loaded interpreter with both SDK clients imported already holds ~100MB
resident, so pressure thresholds are measured as growth above a baseline
(``growth_bytes``) taken when the probe is built or ``reset_baseline()`` is
called, not as absolute RSS.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import psutil


@dataclass(frozen=True)
class MemoryReading:
    heap_used_bytes: int
    heap_total_bytes: int
    rss_bytes: int
    external_bytes: int
    baseline_bytes: int = 0

    @property
    def growth_bytes(self) -> int:
        """Heap usage above the baseline (never negative)."""
        return max(0, self.heap_used_bytes - self.baseline_bytes)


class ResourceProbe(Protocol):
    """Anything that can report process memory and CPU usage."""

    def memory(self) -> MemoryReading: ...

    def cpu_percent(self) -> float: ...

    def reset_baseline(self) -> None: ...


class ProcessProbe:
    """psutil probe for the current (or given) process."""

    def __init__(self, pid: int | None = None) -> None:
        self._process = psutil.Process(pid)
        # Prime the CPU counter so the first real reading is meaningful
        self._process.cpu_percent(interval=None)
        self.baseline_bytes = 0
        self.reset_baseline()

    def reset_baseline(self) -> None:
        """Take the current resident set as the zero point for growth."""
        self.baseline_bytes = self._process.memory_info().rss

    def memory(self) -> MemoryReading:
        info = self._process.memory_info()
        return MemoryReading(
            heap_used_bytes=info.rss,
            heap_total_bytes=info.vms,
            rss_bytes=info.rss,
            external_bytes=getattr(info, "shared", 0),
            baseline_bytes=self.baseline_bytes,
        )

    def cpu_percent(self) -> float:
        """CPU usage of the process since the previous call, per core count."""
        return self._process.cpu_percent(interval=None) / (psutil.cpu_count() or 1)
