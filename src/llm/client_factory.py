# src/llm/client_factory.py — v3
"""Factory: instantiate an upstream LLM client from its service name."""

from __future__ import annotations

import importlib
import logging

from llmrelay.config.settings import Settings
from llmrelay.llm.base_client import BaseLLMClient

logger = logging.getLogger(__name__)

# Registry of service name → adapter class path (lazy import).
_PROVIDER_REGISTRY: dict[str, str] = {
    "claude": "llmrelay.llm.adapters.anthropic_adapter.AnthropicAdapter",
    "perplexity": "llmrelay.llm.adapters.perplexity_adapter.PerplexityAdapter",
}


class UnsupportedProviderError(ValueError):
    """Raised when a service is not registered."""


def create_llm_client(
    service: str,
    settings: Settings | None = None,
    **kwargs: object,
) -> BaseLLMClient:
    """Instantiate the adapter for a service.

    Args:
        service: Service identifier (claude, perplexity).
        settings: Application settings (API keys, models, base URL).
        **kwargs: Adapter arguments overriding the settings.

    Returns:
        Configured BaseLLMClient instance.

    Raises:
        UnsupportedProviderError: If the service is not registered.
    """
    if service not in _PROVIDER_REGISTRY:
        raise UnsupportedProviderError(
            f"Unsupported LLM service: {service!r}. "
            f"Available: {', '.join(sorted(_PROVIDER_REGISTRY))}"
        )

    adapter_cls = _import_class(_PROVIDER_REGISTRY[service])
    init_kwargs = dict(kwargs)

    if settings is not None:
        if service == "claude":
            init_kwargs.setdefault("api_key", settings.anthropic_api_key)
            init_kwargs.setdefault("model", settings.anthropic_model)
            init_kwargs.setdefault("max_tokens_default", settings.llm_max_tokens)
        elif service == "perplexity":
            init_kwargs.setdefault("api_key", settings.perplexity_api_key)
            init_kwargs.setdefault("model", settings.perplexity_model)
            init_kwargs.setdefault(
                "deep_research_model", settings.perplexity_deep_research_model
            )
            init_kwargs.setdefault("base_url", settings.perplexity_base_url)

    logger.debug("Creating LLM client: service=%s", service)
    return adapter_cls(**init_kwargs)


def create_service_clients(settings: Settings | None = None) -> dict[str, BaseLLMClient]:
    """One client per registered service, keyed by service name."""
    return {name: create_llm_client(name, settings) for name in _PROVIDER_REGISTRY}


def register_provider(name: str, class_path: str) -> None:
    """Register a custom service adapter.

    Args:
        name: Service identifier.
        class_path: Fully qualified class path implementing BaseLLMClient.
    """
    _PROVIDER_REGISTRY[name] = class_path
    logger.info("Registered LLM service: %s → %s", name, class_path)


def _import_class(class_path: str) -> type:
    """Dynamically import a class from its fully qualified path."""
    module_path, class_name = class_path.rsplit(".", 1)
    module = importlib.import_module(module_path)
    return getattr(module, class_name)
