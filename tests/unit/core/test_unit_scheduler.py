# tests/unit/core/test_unit_scheduler.py — v1
"""Tests for core/scheduler.py — periodic background loops."""

from __future__ import annotations

import asyncio

import pytest

from llmrelay.core.scheduler import PeriodicTask


class TestPeriodicTask:
    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError, match="interval_s"):
            PeriodicTask("bad", 0, lambda: None)

    @pytest.mark.asyncio
    async def test_runs_periodically(self):
        calls: list[int] = []
        task = PeriodicTask("tick", 0.01, lambda: calls.append(1))
        task.start()
        await asyncio.sleep(0.08)
        await task.stop()
        assert len(calls) >= 2
        assert not task.is_running

    @pytest.mark.asyncio
    async def test_async_callback(self):
        calls: list[int] = []

        async def cb():
            calls.append(1)

        task = PeriodicTask("tick", 0.01, cb, run_immediately=True)
        task.start()
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        await task.stop()
        assert calls

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        task = PeriodicTask("tick", 10, lambda: None)
        task.start()
        first = task._task
        task.start()
        assert task._task is first
        await task.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        task = PeriodicTask("tick", 10, lambda: None)
        await task.stop()
        await task.stop()
        assert not task.is_running

    @pytest.mark.asyncio
    async def test_errors_do_not_stop_loop(self):
        def boom():
            raise RuntimeError("boom")

        task = PeriodicTask("failing", 0.01, boom)
        task.start()
        await asyncio.sleep(0.06)
        await task.stop()
        assert task.errors >= 2
        assert task.runs == task.errors

    @pytest.mark.asyncio
    async def test_run_once(self):
        calls: list[int] = []
        task = PeriodicTask("manual", 10, lambda: calls.append(1))
        await task.run_once()
        assert calls == [1]
        assert task.runs == 1
