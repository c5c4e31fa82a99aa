# src/llm/adapters/perplexity_adapter.py — v2
"""Perplexity adapter implementing BaseLLMClient.

Perplexity exposes an OpenAI-compatible chat completions API, so this uses
the openai SDK pointed at the Perplexity base URL. "search" runs the online
model; "deep_research" runs the deep research model. Citations returned by
the API are surfaced on LLMResponse.citations.
SDK retries are disabled: the circuit breaker sees every upstream attempt.
"""

from __future__ import annotations

import time
from typing import Any

from llmrelay.llm.base_client import BaseLLMClient
from llmrelay.llm.models import LLMResponse, Message


class PerplexityAdapter(BaseLLMClient):
    """Perplexity Sonar adapter."""

    def __init__(
        self,
        model: str = "sonar",
        deep_research_model: str = "sonar-deep-research",
        api_key: str = "",
        base_url: str = "https://api.perplexity.ai",
        client: Any = None,
    ):
        self._model = model
        self._deep_research_model = deep_research_model
        self._api_key = api_key
        self._base_url = base_url
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            import openai

            self._client = openai.AsyncOpenAI(
                api_key=self._api_key, base_url=self._base_url, max_retries=0
            )
        return self._client

    def model_for(self, mode: str) -> str:
        return self._deep_research_model if mode == "deep_research" else self._model

    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        mode: str = "search",
        max_tokens: int = 4096,
        temperature: float = 0.2,
    ) -> LLMResponse:
        self.check_mode(mode)
        model = self.model_for(mode)

        pplx_messages: list[dict[str, Any]] = []
        if system:
            pplx_messages.append({"role": "system", "content": system})
        for m in messages:
            pplx_messages.append({"role": m.role, "content": m.content})

        t0 = time.monotonic()
        resp = await self._get_client().chat.completions.create(
            model=model,
            messages=pplx_messages,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        latency = int((time.monotonic() - t0) * 1000)

        choice = resp.choices[0]
        usage = resp.usage
        return LLMResponse(
            content=choice.message.content or "",
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            model=model,
            provider="perplexity",
            mode=mode,
            latency_ms=latency,
            citations=[str(c) for c in (getattr(resp, "citations", None) or [])],
            raw_response=resp,
        )

    @property
    def supported_modes(self) -> frozenset[str]:
        # "chat" is served by the online model, used when Claude falls back here
        return frozenset({"search", "deep_research", "chat"})

    @property
    def provider_name(self) -> str:
        return "perplexity"
