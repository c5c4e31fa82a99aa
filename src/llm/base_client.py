# src/llm/base_client.py — v2
"""Abstract LLM client interface shared by the Claude and Perplexity adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod

from llmrelay.llm.models import LLMResponse, Message


class BaseLLMClient(ABC):
    """Unified interface for upstream LLM services."""

    @abstractmethod
    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        mode: str = "chat",
        max_tokens: int = 4096,
        temperature: float = 0.2,
    ) -> LLMResponse:
        """Run one completion in the given mode.

        Raises:
            ValueError: If the mode is not in supported_modes.
        """

    @property
    @abstractmethod
    def supported_modes(self) -> frozenset[str]:
        """Route modes this service can serve."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Service identifier (claude, perplexity)."""

    def check_mode(self, mode: str) -> None:
        if mode not in self.supported_modes:
            raise ValueError(
                f"{self.provider_name} does not support mode {mode!r} "
                f"(supported: {', '.join(sorted(self.supported_modes))})"
            )
