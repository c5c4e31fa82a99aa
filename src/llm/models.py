# src/llm/models.py — v2
"""LLM-specific types: Message, LLMResponse."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

ServiceName = Literal["claude", "perplexity"]
RouteMode = Literal["chat", "chart", "search", "deep_research"]


class Message(BaseModel):
    """Single message in a conversation."""

    role: Literal["user", "assistant", "system"]
    content: str


class LLMResponse(BaseModel):
    """Normalized response from either upstream service."""

    content: str
    input_tokens: int = 0
    output_tokens: int = 0
    model: str
    provider: str
    mode: str = "chat"
    latency_ms: int = 0
    citations: list[str] = []
    raw_response: Any = Field(default=None, exclude=True)
