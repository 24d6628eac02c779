"""Command-line interface for the Mavin metadata cache."""

from __future__ import annotations

import argparse
import asyncio
import sys
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rich.table import Table

from mavin.core.config import build_config, load_config
from mavin.core.exceptions import ConfigurationError
from mavin.core.logger import get_loggers, get_shared_console
from mavin.core.models.settings import LogLevel
from mavin.services.dependency_container import DependencyContainer

from .lookup import TrackLookup

if TYPE_CHECKING:
    from mavin.core.models.records import SearchResult
    from mavin.core.models.settings import AppConfig
    from mavin.services.cache_manager import CacheStats

DEFAULT_CONFIG_FILES = ("my-config.yaml", "config.yaml")


def _add_search_command(subparsers: Any) -> None:
    """Add search command."""
    parser = subparsers.add_parser(
        "search",
        help="Look up a track by free-text query",
        description="Serve the query from cache, resolving it through the providers on a miss",
    )
    parser.add_argument("query", nargs="+", help="Search query, e.g. 'city boys burna boy'")


def _add_warm_command(subparsers: Any) -> None:
    """Add warm command."""
    parser = subparsers.add_parser(
        "warm",
        help="Prime the device cache with popular searches",
        description="Replay the most popular stored searches into the device cache",
    )
    parser.add_argument("--limit", type=int, default=50, help="Maximum number of searches to warm (default: 50)")


def _add_jobs_command(subparsers: Any) -> None:
    """Add jobs command."""
    parser = subparsers.add_parser(
        "jobs",
        help="Run background maintenance jobs",
        description="Run cache warming, stream refresh, stale pruning and stats on their schedules",
    )
    parser.add_argument("--once", action="store_true", help="Run every job once and exit")


def _add_report_failure_command(subparsers: Any) -> None:
    """Add report-failure command."""
    parser = subparsers.add_parser(
        "report-failure",
        help="Report a playback failure for a stream",
        description="Lower the stream's health score; the stream is deactivated after repeated failures",
    )
    parser.add_argument("stream_id", help="Stream id")
    parser.add_argument("--query", help="Query whose device cache entry should be dropped")


class CLI:
    """Command-line interface handler."""

    def __init__(self) -> None:
        """Initialize CLI parser."""
        self.parser = self._create_parser()

    @staticmethod
    def _create_parser() -> argparse.ArgumentParser:
        """Create the argument parser.

        Returns:
            Configured ArgumentParser

        """
        parser = argparse.ArgumentParser(
            prog="mavin",
            description="Mavin - two-tier music metadata cache with multi-provider resolution",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Examples:
    # Resolve a query (cached after the first call)
    %(prog)s search city boys burna boy

    # Show cache statistics
    %(prog)s stats

    # Run maintenance once
    %(prog)s jobs --once
            """,
        )
        parser.add_argument(
            "--config",
            type=str,
            help="Path to configuration file. If not specified, tries 'my-config.yaml' first, then 'config.yaml', then built-in defaults.",
        )
        parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

        subparsers = parser.add_subparsers(
            dest="command", title="Commands", description="Available commands", help="Use '%(prog)s COMMAND --help' for command-specific help"
        )
        subparsers.required = True

        _add_search_command(subparsers)
        _add_warm_command(subparsers)
        subparsers.add_parser("stats", help="Show cache statistics")
        _add_jobs_command(subparsers)
        _add_report_failure_command(subparsers)
        subparsers.add_parser("clear", help="Clear the device cache (the durable store is kept)")
        return parser

    def parse_args(self, args: list[str] | None = None) -> argparse.Namespace:
        """Parse command-line arguments.

        Args:
            args: List of arguments (use sys.argv if None)

        Returns:
            Parsed arguments namespace

        """
        return self.parser.parse_args(args)


def resolve_config(config_path: str | None) -> AppConfig:
    """Load the given config file, else the first default file present, else defaults.

    Raises:
        ConfigurationError: If a config file exists but cannot be loaded

    """
    if config_path:
        return load_config(config_path)
    for candidate in DEFAULT_CONFIG_FILES:
        if Path(candidate).is_file():
            return load_config(candidate)
    return build_config()


def _print_result(result: SearchResult | None, query: str) -> None:
    console = get_shared_console()
    if result is None:
        console.print(f"[yellow]No result for[/yellow] '{query}'")
        return
    table = Table(title=f"'{query}' [dim]({result.source})[/dim]", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    track = result.track
    table.add_row("Track id", track.id)
    table.add_row("Title", track.title)
    table.add_row("Artist", track.artist)
    table.add_row("Album", track.album or "-")
    table.add_row("ISRC", track.isrc or "-")
    table.add_row("Duration", f"{track.duration_seconds}s")
    if result.stream is not None:
        table.add_row("Stream", f"{result.stream.source} ({result.stream.id})")
        table.add_row("Stream URL", result.stream.stream_url)
        table.add_row("Health", str(result.stream.health_score))
    console.print(table)


def _print_stats(stats: CacheStats) -> None:
    table = Table(title="Cache statistics")
    table.add_column("Tier", style="cyan")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    device = stats.device
    for metric, value in (("size", f"{device.size}/{device.max_size}"), ("hits", device.hits), ("misses", device.misses), ("evictions", device.evictions)):
        table.add_row("device", metric, str(value))
    store = stats.store.to_dict()
    for metric, value in store.items():
        table.add_row("store", metric, str(value))
    for metric, value in stats.counters.items():
        table.add_row("manager", metric, str(value))
    get_shared_console().print(table)


async def run_command(deps: DependencyContainer, args: argparse.Namespace) -> int:
    """Execute one parsed command against an initialized container.

    Returns:
        Process exit code.

    """
    manager = deps.cache_manager
    match args.command:
        case "search":
            query = " ".join(args.query)
            lookup = TrackLookup(manager, deps.orchestrator, deps.console_logger, deps.error_logger)
            result = await lookup.search(query)
            _print_result(result, query)
            return 0 if result is not None else 1
        case "warm":
            warmed = await manager.warm_cache(args.limit)
            get_shared_console().print(f"Warmed [bold]{warmed}[/bold] searches")
        case "stats":
            _print_stats(await manager.get_stats())
        case "jobs":
            jobs = deps.background_jobs
            if args.once:
                await jobs.run_all_jobs()
            else:
                jobs.start()
                await asyncio.Event().wait()
        case "report-failure":
            if not await manager.report_stream_failure(args.stream_id, args.query):
                get_shared_console().print(f"[red]Stream {args.stream_id} not updated[/red]")
                return 1
        case "clear":
            await manager.clear_all()
    return 0


async def main_async(argv: list[str] | None = None) -> int:
    """Execute main async entry point."""
    args = CLI().parse_args(argv)
    start_time = time.time()

    try:
        config = resolve_config(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    if args.verbose:
        config.logging.levels.console = LogLevel.DEBUG

    console_logger, error_logger, listener = get_loggers(config)
    deps = DependencyContainer(config, console_logger, error_logger, logging_listener=listener)
    try:
        await deps.initialize()
        return await run_command(deps, args)
    except ConfigurationError as e:
        error_logger.critical("Configuration error: %s", e)
        return 2
    finally:
        await deps.shutdown()
        console_logger.debug("Total execution time: %.2f seconds", time.time() - start_time)


def run() -> None:
    """Console script entry point."""
    try:
        sys.exit(asyncio.run(main_async()))
    except KeyboardInterrupt:
        print("\nInterrupted by user.", file=sys.stderr)
        sys.exit(130)
