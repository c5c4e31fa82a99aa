# src/llm/adapters/anthropic_adapter.py — v4
"""Anthropic Claude adapter implementing BaseLLMClient.

Uses the official anthropic SDK. Serves the general conversational route
("chat") and structured chart generation ("chart"), where the model is
asked to answer with a single JSON chart specification.
SDK retries are disabled: the circuit breaker sees every upstream attempt.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from llmrelay.llm.base_client import BaseLLMClient
from llmrelay.llm.models import LLMResponse, Message

logger = logging.getLogger(__name__)

CHART_SYSTEM_PROMPT = (
    "When asked for a chart, graph, plot or visualization, answer with a single "
    "JSON object describing it: chart type, title, axis labels and data series. "
    "Do not add prose outside the JSON."
)


class AnthropicAdapter(BaseLLMClient):
    """Adapter for Anthropic Claude models."""

    def __init__(
        self,
        model: str = "claude-sonnet-4-20250514",
        api_key: str | None = None,
        max_tokens_default: int = 4096,
        client: Any = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._max_tokens_default = max_tokens_default
        self.__client = client

    @property
    def _client(self):
        """Lazy-init Anthropic client (only on first API call)."""
        if self.__client is None:
            import anthropic

            self.__client = anthropic.AsyncAnthropic(
                api_key=self._api_key or "", max_retries=0
            )
        return self.__client

    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        mode: str = "chat",
        max_tokens: int = 4096,
        temperature: float = 0.2,
    ) -> LLMResponse:
        """Text completion via Anthropic Messages API."""
        self.check_mode(mode)
        kwargs = self._build_kwargs(messages, system, mode, max_tokens, temperature)

        start = time.monotonic()
        response = await self._client.messages.create(**kwargs)
        latency_ms = int((time.monotonic() - start) * 1000)

        return LLMResponse(
            content=self._extract_content(response),
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            model=response.model,
            provider="claude",
            mode=mode,
            latency_ms=latency_ms,
            raw_response=response,
        )

    @property
    def supported_modes(self) -> frozenset[str]:
        return frozenset({"chat", "chart"})

    @property
    def provider_name(self) -> str:
        return "claude"

    # --- Internal helpers ---

    def _build_kwargs(
        self,
        messages: list[Message],
        system: str | None,
        mode: str,
        max_tokens: int,
        temperature: float,
    ) -> dict[str, Any]:
        # System messages go in the dedicated parameter, not the message list
        system_parts = [m.content for m in messages if m.role == "system"]
        if system:
            system_parts.insert(0, system)
        if mode == "chart":
            system_parts.append(CHART_SYSTEM_PROMPT)

        kwargs: dict[str, Any] = {
            "model": self._model,
            "max_tokens": max_tokens or self._max_tokens_default,
            "temperature": temperature,
            "messages": [
                {"role": m.role, "content": m.content}
                for m in messages if m.role != "system"
            ],
        }
        if system_parts:
            kwargs["system"] = "\n\n".join(system_parts)
        return kwargs

    @staticmethod
    def _extract_content(response: Any) -> str:
        """Concatenate text blocks from Anthropic response content."""
        texts = [
            block.text for block in response.content
            if getattr(block, "type", None) == "text"
        ]
        return "".join(texts)
