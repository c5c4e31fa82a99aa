# tests/unit/monitor/test_unit_resource_manager.py — v2
"""Tests for monitor/resource_manager.py — pressure handling and pools."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from llmrelay.cache.similarity_cache import SimilarityCache
from llmrelay.config.settings import MonitorConfig
from llmrelay.monitor.resource_manager import ResourceManager, compute_resource_factor


def _manager(probe, clock, caches=None, collect=None, **overrides) -> ResourceManager:
    return ResourceManager(
        MonitorConfig(**overrides), probe=probe, caches=caches, clock=clock,
        collect=collect or MagicMock(return_value=0),
    )


class TestResourceFactor:
    def test_idle(self):
        assert compute_resource_factor(0, 0) == pytest.approx(1.0)

    def test_saturated_floor(self):
        assert compute_resource_factor(100, 100) == pytest.approx(0.3)

    def test_weighted(self):
        assert compute_resource_factor(50, 50) == pytest.approx(0.5)
        assert compute_resource_factor(0, 50) == pytest.approx(0.7)

    def test_inputs_clamped(self):
        assert compute_resource_factor(-20, 250) == pytest.approx(0.4 + 0.6 * 0.3)


class TestOptimizeConnections:
    def test_scales_by_factor(self, probe, clock):
        manager = _manager(probe, clock)
        settings = manager.optimize_connections(0.6)
        assert settings.pool_size == 3
        assert settings.timeout_s == pytest.approx(9.0)
        assert settings.idle_timeout_s == pytest.approx(18.0)

    def test_factor_floor(self, probe, clock):
        settings = _manager(probe, clock).optimize_connections(0.05)
        assert settings.resource_factor == pytest.approx(0.3)
        assert settings.pool_size >= 1

    def test_resizes_existing_pools(self, probe, clock):
        manager = _manager(probe, clock)
        manager.get_connection("db")
        manager.optimize_connections(0.3)
        assert manager._pools["db"].max_size == manager.connection_settings.pool_size


class TestCheckResources:
    def test_normal_load(self, probe, clock):
        collect = MagicMock()
        probe.heap_mb = 40
        result = _manager(probe, clock, collect=collect).check_resources()
        assert result.memory_percent == pytest.approx(50.0)
        assert result.resource_factor == pytest.approx(0.7)
        assert not result.over_threshold
        collect.assert_not_called()

    def test_over_threshold_collects(self, probe, clock):
        collect = MagicMock(return_value=0)
        cache = MagicMock()
        probe.heap_mb = 100
        manager = _manager(probe, clock, caches=[cache], collect=collect)
        result = manager.check_resources()
        assert result.over_threshold
        assert not result.forced_cleanup
        collect.assert_called_once()
        cache.evict_for_memory_pressure.assert_not_called()

    def test_forced_cleanup_above_hard_limit(self, probe, clock):
        cache = MagicMock()
        cache.evict_for_memory_pressure.return_value = 5
        probe.heap_mb = 130
        manager = _manager(probe, clock, caches=[cache])
        result = manager.check_resources()
        assert result.forced_cleanup
        assert manager.forced_cleanups == 1
        cache.evict_for_memory_pressure.assert_called_once()

    def test_forced_cleanup_evicts_real_cache(self, probe, clock):
        cache = SimilarityCache(clock=clock)
        for i in range(10):
            cache.set(f"k{i}", i)
        manager = _manager(probe, clock, caches=[cache])
        assert manager.force_cleanup("test") == 5
        assert len(cache) == 5
        assert cache.fuzzy_enabled is False

    def test_cache_error_does_not_abort_cleanup(self, probe, clock):
        broken = MagicMock()
        broken.evict_for_memory_pressure.side_effect = RuntimeError("broken")
        healthy = MagicMock()
        healthy.evict_for_memory_pressure.return_value = 3
        manager = _manager(probe, clock, caches=[broken, healthy])
        assert manager.force_cleanup("test") == 3

    def test_probe_failure_is_swallowed(self, probe, clock):
        probe.fail = True
        assert _manager(probe, clock).check_resources() is None

    def test_register_cache_once(self, probe, clock):
        cache = MagicMock()
        manager = _manager(probe, clock)
        manager.register_cache(cache)
        manager.register_cache(cache)
        cache.evict_for_memory_pressure.return_value = 1
        assert manager.force_cleanup("test") == 1


class TestConnectionPools:
    def test_borrow_and_release(self, probe, clock):
        manager = _manager(probe, clock)
        conn = manager.get_connection("db")
        assert conn is not None
        assert conn.id == "db-1"
        assert manager.pool_stats().active_connections == 1
        assert manager.release_connection("db", conn) is True
        assert manager.pool_stats().idle_connections == 1

    def test_reuses_idle(self, probe, clock):
        manager = _manager(probe, clock)
        conn = manager.get_connection("db")
        manager.release_connection("db", conn)
        assert manager.get_connection("db") is conn

    def test_full_pool(self, probe, clock):
        manager = _manager(probe, clock, pool_size=2)
        assert manager.get_connection("db") is not None
        assert manager.get_connection("db") is not None
        assert manager.get_connection("db") is None

    def test_release_unknown(self, probe, clock):
        manager = _manager(probe, clock)
        conn = manager.get_connection("db")
        assert manager.release_connection("other", conn) is False

    def test_cleanup_closes_idle(self, probe, clock):
        resource = MagicMock()
        cache = MagicMock()
        manager = _manager(probe, clock, caches=[cache], pool_idle_timeout=30)
        conn = manager.get_connection("db", factory=lambda: resource)
        manager.release_connection("db", conn)
        clock.advance(31)
        assert manager.cleanup() == 1
        resource.close.assert_called_once()
        assert manager.pool_stats().pools == 0
        cache.remove_expired.assert_called_once()

    def test_cleanup_keeps_busy(self, probe, clock):
        manager = _manager(probe, clock)
        manager.get_connection("db")
        clock.advance(1000)
        assert manager.cleanup() == 0
        assert manager.pool_stats().total_connections == 1


class TestStatus:
    def test_overloaded_by_memory(self, probe, clock):
        probe.heap_mb = 90
        status = _manager(probe, clock).get_status()
        assert status.is_overloaded
        assert status.heap_used_mb == pytest.approx(90.0)

    def test_overloaded_by_pool_utilization(self, probe, clock):
        manager = _manager(probe, clock)
        manager.get_connection("db")
        assert manager.get_status().is_overloaded

    @pytest.mark.asyncio
    async def test_start_stop(self, probe, clock):
        manager = _manager(probe, clock)
        manager.start()
        assert manager.get_status().is_active
        await manager.stop()
        assert not manager.is_active


class TestBaselineGrowth:
    """Pressure is measured as growth over the resident set at startup."""

    def test_idle_interpreter_is_not_under_pressure(self, probe, clock):
        collect = MagicMock()
        cache = MagicMock()
        probe.baseline_mb = 111.4
        probe.heap_mb = 113.0
        manager = _manager(probe, clock, caches=[cache], collect=collect)
        result = manager.check_resources()
        assert result.heap_used_mb == pytest.approx(113.0)
        assert result.heap_growth_mb == pytest.approx(1.6)
        assert not result.over_threshold
        assert not result.forced_cleanup
        assert result.resource_factor > 0.9
        collect.assert_not_called()
        cache.evict_for_memory_pressure.assert_not_called()
        assert not manager.get_status().is_overloaded

    def test_growth_over_baseline_forces_cleanup(self, probe, clock):
        cache = MagicMock()
        cache.evict_for_memory_pressure.return_value = 2
        probe.baseline_mb = 110
        probe.heap_mb = 240
        result = _manager(probe, clock, caches=[cache]).check_resources()
        assert result.heap_growth_mb == pytest.approx(130.0)
        assert result.forced_cleanup
        cache.evict_for_memory_pressure.assert_called_once()

    def test_reset_baseline_zeroes_growth(self, probe, clock):
        probe.heap_mb = 150
        probe.reset_baseline()
        assert not _manager(probe, clock).check_resources().over_threshold


class TestListeners:
    def test_receives_rescaled_settings(self, probe, clock):
        seen = []
        manager = _manager(probe, clock)
        manager.add_listener(seen.append)
        probe.heap_mb = 80
        manager.check_resources()
        assert seen[-1].resource_factor == pytest.approx(0.4 + 0.6 * 0.3)

    def test_listener_error_is_swallowed(self, probe, clock):
        seen = []
        manager = _manager(probe, clock)
        manager.add_listener(MagicMock(side_effect=RuntimeError("boom")))
        manager.add_listener(seen.append)
        settings = manager.optimize_connections(0.5)
        assert seen == [settings]
