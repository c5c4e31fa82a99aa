# tests/conftest.py — v3
"""Shared test fixtures for all unit tests.

Provides a controllable clock, a fake resource probe, isolated settings and
mock upstream clients. No network access: every upstream call is mocked.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from llmrelay.config.settings import Settings
from llmrelay.llm.models import LLMResponse
from llmrelay.logging.context import clear_context
from llmrelay.monitor.probe import MemoryReading

MB = 1024 * 1024


class FakeClock:
    """Callable time source that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProbe:
    """Resource probe returning scripted heap readings (in MB)."""

    def __init__(
        self, heap_mb: float = 10.0, cpu: float = 0.0, baseline_mb: float = 0.0
    ) -> None:
        self.heap_mb = heap_mb
        self.baseline_mb = baseline_mb
        self.cpu = cpu
        self.fail = False
        self.readings: list[float] = []

    def queue(self, *heap_mb: float) -> None:
        """Readings returned by the next memory() calls, in order."""
        self.readings.extend(heap_mb)

    def memory(self) -> MemoryReading:
        if self.fail:
            raise OSError("probe unavailable")
        if self.readings:
            self.heap_mb = self.readings.pop(0)
        used = int(self.heap_mb * MB)
        return MemoryReading(
            heap_used_bytes=used,
            heap_total_bytes=used * 2,
            rss_bytes=used + MB,
            external_bytes=MB,
            baseline_bytes=int(self.baseline_mb * MB),
        )

    def reset_baseline(self) -> None:
        self.baseline_mb = self.heap_mb

    def cpu_percent(self) -> float:
        if self.fail:
            raise OSError("probe unavailable")
        return self.cpu


def make_response(content: str, provider: str = "claude", mode: str = "chat") -> LLMResponse:
    return LLMResponse(content=content, model=f"{provider}-test", provider=provider, mode=mode)


# === FIXTURES ===


@pytest.fixture(autouse=True)
def _reset_log_context():
    yield
    clear_context()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from any local .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def claude_client() -> AsyncMock:
    client = AsyncMock()
    client.complete = AsyncMock(return_value=make_response("Claude answer"))
    client.provider_name = "claude"
    return client


@pytest.fixture
def perplexity_client() -> AsyncMock:
    client = AsyncMock()
    client.complete = AsyncMock(
        return_value=make_response("Perplexity answer", provider="perplexity", mode="search")
    )
    client.provider_name = "perplexity"
    return client


@pytest.fixture
def clients(claude_client: AsyncMock, perplexity_client: AsyncMock) -> dict[str, AsyncMock]:
    return {"claude": claude_client, "perplexity": perplexity_client}
