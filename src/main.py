# src/main.py — v3
"""CLI entry point: ask and status commands.

Usage:
    llmrelay ask "<query>" [--service claude|perplexity] [--deep] [--no-cache]
    llmrelay status
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import TYPE_CHECKING

from llmrelay.version import __version__

if TYPE_CHECKING:
    from llmrelay.config.settings import Settings
    from llmrelay.routing.models import RoutedResponse

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    settings = _load_settings()
    if settings is None:
        return 1
    _setup_logging(settings, args.verbose)

    try:
        return asyncio.run(args.func(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="llmrelay",
        description=f"llmrelay v{__version__} — resilient Claude/Perplexity query router",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- ask ---
    p_ask = subparsers.add_parser("ask", help="Route a single query")
    p_ask.add_argument("query", help="Query text")
    p_ask.add_argument(
        "-s", "--service", choices=["claude", "perplexity"], default=None,
        help="Preferred service (default: chosen from the query)",
    )
    p_ask.add_argument(
        "--deep", action="store_true",
        help="Force Perplexity deep research mode (implies --service perplexity)",
    )
    p_ask.add_argument(
        "--no-cache", action="store_true",
        help="Skip the response cache lookup",
    )
    p_ask.add_argument(
        "--system", default=None,
        help="System prompt",
    )
    p_ask.set_defaults(func=_cmd_ask)

    # --- status ---
    p_status = subparsers.add_parser(
        "status", help="Print circuit, cache and resource status as JSON",
    )
    p_status.set_defaults(func=_cmd_status)

    return parser


async def _cmd_ask(args: argparse.Namespace, settings: Settings) -> int:
    """Route one query and print the answer."""
    from llmrelay.api.facade import RelayService
    from llmrelay.core.errors import RelayError, user_message

    async with RelayService(settings) as relay:
        try:
            result = await relay.ask(
                args.query,
                preferred_service=args.service or ("perplexity" if args.deep else None),
                force_deep_research=args.deep,
                skip_cache=args.no_cache,
                system_prompt=args.system,
            )
        except RelayError as exc:
            logger.error("Query failed: %s", exc)
            print(user_message(exc), file=sys.stderr)
            return 2

    _print_result(result)
    return 0


async def _cmd_status(args: argparse.Namespace, settings: Settings) -> int:
    """Print the status snapshot of a freshly started relay."""
    from llmrelay.api.facade import RelayService

    async with RelayService(settings) as relay:
        relay.breakers.health_check()
        if relay.leak_detector is not None:
            relay.leak_detector.check_memory()
        if relay.resource_manager is not None:
            relay.resource_manager.check_resources()
        status = relay.get_status()
    print(status.model_dump_json(indent=2))
    return 0


def _print_result(result: RoutedResponse) -> None:
    """Print the answer followed by a one-line provenance summary."""
    print(result.content)
    origin = f"{result.service}/{result.mode}"
    if result.cached:
        origin += f" (cache: {result.cache_source})"
    if result.fallback_used:
        origin += f" (fallback after {result.failed_service} failure)"
    print(f"\n[{origin}]", file=sys.stderr)


def _load_settings() -> Settings | None:
    from llmrelay.config.settings import ConfigurationError, load_settings

    try:
        return load_settings()
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return None


def _setup_logging(settings: Settings, verbose: bool) -> None:
    """Configure logging for CLI usage."""
    from llmrelay.logging.logger import setup_logging

    setup_logging(
        level="DEBUG" if verbose else settings.log_level,
        log_format=settings.log_format,
        log_file=str(settings.log_file) if settings.log_file else None,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )


if __name__ == "__main__":
    sys.exit(main())
