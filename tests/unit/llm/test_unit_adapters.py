# tests/unit/llm/test_unit_adapters.py — v2
"""Tests for the Claude and Perplexity adapters with mocked SDK clients."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from llmrelay.llm.adapters.anthropic_adapter import CHART_SYSTEM_PROMPT, AnthropicAdapter
from llmrelay.llm.adapters.perplexity_adapter import PerplexityAdapter
from llmrelay.llm.models import Message


def _anthropic_sdk() -> MagicMock:
    response = SimpleNamespace(
        content=[
            SimpleNamespace(type="text", text="Hello "),
            SimpleNamespace(type="tool_use", text="ignored"),
            SimpleNamespace(type="text", text="there"),
        ],
        usage=SimpleNamespace(input_tokens=12, output_tokens=7),
        model="claude-test",
    )
    sdk = MagicMock()
    sdk.messages.create = AsyncMock(return_value=response)
    return sdk


def _openai_sdk(citations=None) -> MagicMock:
    response = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content="Fresh news"))],
        usage=SimpleNamespace(prompt_tokens=5, completion_tokens=9),
        citations=citations,
    )
    sdk = MagicMock()
    sdk.chat.completions.create = AsyncMock(return_value=response)
    return sdk


class TestAnthropicAdapter:
    @pytest.mark.asyncio
    async def test_chat(self):
        sdk = _anthropic_sdk()
        adapter = AnthropicAdapter(model="claude-test", client=sdk)
        resp = await adapter.complete([Message(role="user", content="Hi")], system="Be brief")
        assert resp.content == "Hello there"
        assert resp.provider == "claude"
        assert resp.input_tokens == 12
        assert resp.output_tokens == 7
        kwargs = sdk.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-test"
        assert kwargs["system"] == "Be brief"
        assert kwargs["messages"] == [{"role": "user", "content": "Hi"}]

    @pytest.mark.asyncio
    async def test_system_messages_merged(self):
        sdk = _anthropic_sdk()
        adapter = AnthropicAdapter(client=sdk)
        await adapter.complete([
            Message(role="system", content="From history"),
            Message(role="user", content="Hi"),
        ])
        kwargs = sdk.messages.create.call_args.kwargs
        assert kwargs["system"] == "From history"
        assert all(m["role"] != "system" for m in kwargs["messages"])

    @pytest.mark.asyncio
    async def test_chart_mode_adds_prompt(self):
        sdk = _anthropic_sdk()
        adapter = AnthropicAdapter(client=sdk)
        resp = await adapter.complete([Message(role="user", content="Create a bar chart")], mode="chart")
        assert resp.mode == "chart"
        assert CHART_SYSTEM_PROMPT in sdk.messages.create.call_args.kwargs["system"]

    @pytest.mark.asyncio
    async def test_rejects_search_mode(self):
        adapter = AnthropicAdapter(client=_anthropic_sdk())
        with pytest.raises(ValueError, match="does not support"):
            await adapter.complete([Message(role="user", content="Hi")], mode="search")

    def test_identity(self):
        adapter = AnthropicAdapter(client=MagicMock())
        assert adapter.provider_name == "claude"
        assert adapter.supported_modes == {"chat", "chart"}

    def test_sdk_client_does_not_retry(self):
        sdk = AnthropicAdapter(api_key="sk-ant-test")._client
        assert sdk.max_retries == 0


class TestPerplexityAdapter:
    @pytest.mark.asyncio
    async def test_search(self):
        sdk = _openai_sdk(citations=["https://example.com/a"])
        adapter = PerplexityAdapter(model="sonar", client=sdk)
        resp = await adapter.complete(
            [Message(role="user", content="latest news")], system="Cite sources", mode="search",
        )
        assert resp.content == "Fresh news"
        assert resp.provider == "perplexity"
        assert resp.citations == ["https://example.com/a"]
        assert resp.output_tokens == 9
        kwargs = sdk.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "sonar"
        assert kwargs["messages"][0] == {"role": "system", "content": "Cite sources"}

    @pytest.mark.asyncio
    async def test_deep_research_model(self):
        sdk = _openai_sdk()
        adapter = PerplexityAdapter(deep_research_model="sonar-deep-research", client=sdk)
        resp = await adapter.complete([Message(role="user", content="q")], mode="deep_research")
        assert resp.model == "sonar-deep-research"
        assert resp.citations == []
        assert sdk.chat.completions.create.call_args.kwargs["model"] == "sonar-deep-research"

    @pytest.mark.asyncio
    async def test_chat_mode_uses_online_model(self):
        sdk = _openai_sdk()
        adapter = PerplexityAdapter(model="sonar", client=sdk)
        resp = await adapter.complete([Message(role="user", content="q")], mode="chat")
        assert resp.model == "sonar"

    @pytest.mark.asyncio
    async def test_rejects_chart_mode(self):
        adapter = PerplexityAdapter(client=_openai_sdk())
        with pytest.raises(ValueError, match="does not support"):
            await adapter.complete([Message(role="user", content="q")], mode="chart")

    def test_builds_sdk_client_lazily(self):
        adapter = PerplexityAdapter(api_key="pplx-test", base_url="https://api.perplexity.ai")
        client = adapter._get_client()
        assert adapter._get_client() is client
        assert "api.perplexity.ai" in str(client.base_url)

    def test_sdk_client_does_not_retry(self):
        assert PerplexityAdapter(api_key="pplx-test")._get_client().max_retries == 0
