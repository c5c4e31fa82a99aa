# tests/unit/monitor/test_unit_leak_detector.py — v2
"""Tests for monitor/leak_detector.py — growth tracking and forced GC."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from llmrelay.config.settings import MonitorConfig
from llmrelay.monitor.leak_detector import (
    RESOURCE_SAVING_MAX_SAMPLES,
    MemoryLeakDetector,
    growth_percent,
    trend_mb_per_hour,
)
from llmrelay.monitor.models import ResourceSample

MB = 1024 * 1024


def _detector(probe, clock, collect=None, **overrides) -> MemoryLeakDetector:
    defaults = dict(resource_saving_mode=False, gc_trigger_threshold_mb=1000.0)
    defaults.update(overrides)
    return MemoryLeakDetector(
        MonitorConfig(**defaults), probe=probe, clock=clock,
        collect=collect or MagicMock(return_value=0),
    )


class TestHelpers:
    def test_growth_percent(self):
        assert growth_percent(100, 130) == pytest.approx(30.0)
        assert growth_percent(100, 90) == pytest.approx(-10.0)

    def test_growth_from_zero(self):
        assert growth_percent(0, 100) == 0.0

    def test_trend_needs_three_samples(self):
        samples = [
            ResourceSample(timestamp_ms=i * 1000, heap_used_bytes=MB, heap_total_bytes=MB)
            for i in range(2)
        ]
        assert trend_mb_per_hour(samples) == 0.0

    def test_trend_slope(self):
        samples = [
            ResourceSample(
                timestamp_ms=i * 3_600_000, heap_used_bytes=(10 + i) * MB,
                heap_total_bytes=100 * MB,
            )
            for i in range(4)
        ]
        assert trend_mb_per_hour(samples) == pytest.approx(1.0)

    def test_trend_same_timestamp(self):
        samples = [
            ResourceSample(timestamp_ms=0, heap_used_bytes=i * MB, heap_total_bytes=MB)
            for i in range(3)
        ]
        assert trend_mb_per_hour(samples) == 0.0


class TestSampling:
    def test_full_sample(self, probe, clock):
        detector = _detector(probe, clock)
        sample = detector.take_sample("manual")
        assert sample.label == "manual"
        assert sample.timestamp_ms == int(clock() * 1000)
        assert sample.heap_used_mb == pytest.approx(10.0)
        assert sample.rss_bytes is not None
        assert sample.external_bytes is not None

    def test_resource_saving_sample(self, probe, clock):
        detector = _detector(probe, clock, resource_saving_mode=True, max_samples=100)
        assert detector.max_samples == RESOURCE_SAVING_MAX_SAMPLES
        sample = detector.take_sample()
        assert sample.rss_bytes is None
        assert sample.external_bytes is None

    def test_ring_buffer_bounded(self, probe, clock):
        detector = _detector(probe, clock, max_samples=5)
        for _ in range(8):
            detector.take_sample()
        assert len(detector.samples) == 5


class TestLeakDetection:
    def test_flags_sustained_growth(self, probe, clock):
        detector = _detector(probe, clock)
        probe.queue(10, 13, 16, 20)
        results = []
        for _ in range(4):
            results.append(detector.check_memory())
            clock.advance(300)
        assert [r.leak_detected for r in results] == [False, False, False, True]
        assert detector.leaks_detected == 1
        assert detector.consecutive_growth == 0
        assert detector.get_status().recommendations

    def test_growth_subsiding_resets_counter(self, probe, clock):
        detector = _detector(probe, clock)
        probe.queue(10, 13, 13.5)
        detector.check_memory()
        detector.check_memory()
        assert detector.consecutive_growth == 1
        result = detector.check_memory()
        assert result.consecutive_growth == 0
        assert detector.leaks_detected == 0

    def test_window_growth(self, probe, clock):
        detector = _detector(probe, clock)
        probe.queue(10, 11, 15)
        for _ in range(3):
            result = detector.check_memory()
            clock.advance(60)
        assert result.window_growth_pct == pytest.approx(50.0)
        assert detector.get_status().window_growth_pct == pytest.approx(50.0)

    def test_probe_failure_is_swallowed(self, probe, clock):
        detector = _detector(probe, clock)
        probe.fail = True
        assert detector.check_memory() is None


class TestForcedGC:
    def test_triggers_above_threshold(self, probe, clock):
        collect = MagicMock(return_value=42)
        detector = _detector(probe, clock, collect=collect, gc_trigger_threshold_mb=50.0)
        probe.queue(60, 40)
        result = detector.check_memory()
        assert result.gc_triggered
        assert result.gc_freed_bytes == 20 * MB
        collect.assert_called_once()
        assert detector.gc_runs == 1

    def test_respects_min_interval(self, probe, clock):
        collect = MagicMock(return_value=0)
        detector = _detector(
            probe, clock, collect=collect, gc_trigger_threshold_mb=50.0, min_gc_interval=60.0,
        )
        probe.heap_mb = 60
        detector.check_memory()
        clock.advance(30)
        assert not detector.check_memory().gc_triggered
        clock.advance(30)
        assert detector.check_memory().gc_triggered
        assert collect.call_count == 2

    def test_freed_never_negative(self, probe, clock):
        detector = _detector(probe, clock, gc_trigger_threshold_mb=50.0)
        probe.queue(60, 70)
        assert detector.check_memory().gc_freed_bytes == 0

    def test_not_below_threshold(self, probe, clock):
        collect = MagicMock()
        detector = _detector(probe, clock, collect=collect, gc_trigger_threshold_mb=50.0)
        detector.check_memory()
        collect.assert_not_called()

    def test_idle_interpreter_baseline_does_not_trigger(self, probe, clock):
        collect = MagicMock()
        probe.baseline_mb = 110
        probe.heap_mb = 112
        detector = _detector(probe, clock, collect=collect, gc_trigger_threshold_mb=70.0)
        result = detector.check_memory()
        assert not result.gc_triggered
        assert result.sample.growth_mb == pytest.approx(2.0)
        collect.assert_not_called()

    def test_growth_above_baseline_triggers(self, probe, clock):
        detector = _detector(probe, clock, gc_trigger_threshold_mb=70.0)
        probe.baseline_mb = 110
        probe.heap_mb = 190
        assert detector.check_memory().gc_triggered


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_takes_baseline(self, probe, clock):
        detector = _detector(probe, clock, resource_saving_mode=True)
        detector.start()
        assert detector.is_monitoring
        assert detector.samples[0].label == "baseline"
        await detector.stop()
        assert not detector.is_monitoring
        assert detector.samples == []

    @pytest.mark.asyncio
    async def test_stop_keeps_samples_without_saving_mode(self, probe, clock):
        detector = _detector(probe, clock)
        detector.start()
        await detector.stop()
        assert len(detector.samples) == 1

    @pytest.mark.asyncio
    async def test_start_survives_probe_failure(self, probe, clock):
        detector = _detector(probe, clock)
        probe.fail = True
        detector.start()
        assert detector.samples == []
        await detector.stop()

    def test_status(self, probe, clock):
        detector = _detector(probe, clock)
        detector.check_memory()
        status = detector.get_status()
        assert status.samples == 1
        assert status.latest is not None
        assert status.is_monitoring is False
