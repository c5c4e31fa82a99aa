# tests/unit/test_main.py — v3
"""Tests for main.py — CLI entry point."""

from __future__ import annotations

import json
import logging

import pytest

from llmrelay.config.settings import ConfigurationError, Settings
from llmrelay.logging.logger import ROOT_LOGGER
from llmrelay.main import _build_parser, main


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    logging.getLogger(ROOT_LOGGER).handlers.clear()


@pytest.fixture
def cli_env(monkeypatch, clients):
    monkeypatch.setattr(
        "llmrelay.config.settings.load_settings",
        lambda: Settings(_env_file=None, monitor_enabled=False),
    )
    monkeypatch.setattr("llmrelay.api.facade.create_service_clients", lambda settings: clients)
    return clients


class TestBuildParser:
    def test_version_flag(self):
        with pytest.raises(SystemExit) as exc_info:
            _build_parser().parse_args(["--version"])
        assert exc_info.value.code == 0

    def test_ask_subcommand(self):
        args = _build_parser().parse_args(
            ["ask", "latest news", "-s", "perplexity", "--deep", "--no-cache"]
        )
        assert args.command == "ask"
        assert args.query == "latest news"
        assert args.service == "perplexity"
        assert args.deep is True
        assert args.no_cache is True

    def test_ask_defaults(self):
        args = _build_parser().parse_args(["ask", "hello"])
        assert args.service is None
        assert args.deep is False
        assert args.system is None

    def test_invalid_service(self):
        with pytest.raises(SystemExit):
            _build_parser().parse_args(["ask", "q", "-s", "gemini"])

    def test_status_subcommand(self):
        assert _build_parser().parse_args(["status"]).command == "status"


class TestMain:
    def test_no_command(self, capsys):
        assert main([]) == 1

    def test_ask(self, cli_env, capsys):
        assert main(["ask", "Explain recursion"]) == 0
        captured = capsys.readouterr()
        assert "Claude answer" in captured.out
        assert "[claude/chat]" in captured.err

    def test_deep_flag_routes_to_perplexity(self, cli_env, capsys):
        assert main(["ask", "Hamlet", "--deep"]) == 0
        assert "[perplexity/deep_research]" in capsys.readouterr().err
        cli_env["perplexity"].complete.assert_awaited_once()

    def test_ask_failure(self, cli_env, capsys):
        for client in cli_env.values():
            client.complete.side_effect = RuntimeError("down")
        assert main(["ask", "Explain recursion"]) == 2
        assert "temporarily unavailable" in capsys.readouterr().err

    def test_status(self, cli_env, capsys):
        assert main(["status"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["running"] is True
        assert "router" in data

    def test_configuration_error(self, monkeypatch, capsys):
        def broken():
            raise ConfigurationError("REQUEST_TIMEOUT must be > 0")

        monkeypatch.setattr("llmrelay.config.settings.load_settings", broken)
        assert main(["status"]) == 1
        assert "Configuration error" in capsys.readouterr().err
