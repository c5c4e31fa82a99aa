# src/__init__.py — v1
"""llmrelay: resilient routing and caching for Claude and Perplexity queries."""

from llmrelay.version import __version__

__all__ = ["__version__"]
