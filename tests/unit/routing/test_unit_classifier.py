# tests/unit/routing/test_unit_classifier.py — v1
"""Tests for routing/classifier.py — regex intent detection."""

from __future__ import annotations

import pytest

from llmrelay.routing.classifier import (
    classify_query,
    needs_chart,
    needs_deep_research,
    needs_internet,
)


class TestPatterns:
    @pytest.mark.parametrize("query", [
        "What are the latest news on fusion?",
        "Tell me the STOCK PRICE of ACME",
        "what happened today in Paris",
        "weather in Lyon tomorrow",
    ])
    def test_internet(self, query):
        assert needs_internet(query)

    @pytest.mark.parametrize("query", [
        "Write an in-depth analysis of tariffs",
        "I need comprehensive research on batteries",
        "Find academic papers... I mean academic research on sleep",
    ])
    def test_deep_research(self, query):
        assert needs_deep_research(query)

    @pytest.mark.parametrize("query", [
        "Create a chart of monthly revenue",
        "please generate the graph for Q3",
        "make a pie chart of expenses",
        "Visualize this data for me",
    ])
    def test_chart(self, query):
        assert needs_chart(query)

    def test_general(self):
        intent = classify_query("Explain recursion with an example")
        assert intent.label == "general"
        assert not (intent.needs_internet or intent.needs_deep_research or intent.needs_chart)


class TestIntentLabel:
    def test_internet_deep(self):
        intent = classify_query("comprehensive research on the latest news about AI")
        assert intent.needs_internet and intent.needs_deep_research
        assert intent.label == "internet_deep_research"

    def test_chart_wins_label(self):
        assert classify_query("create a chart of the weather").label == "chart"
