"""Command-line entry point: ``tropes-crawler`` / ``python -m tropes_crawler``."""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Sequence
import logging
import sys
from typing import Any

from pydantic import ValidationError

from .config import Settings
from .fetcher import Fetcher
from .observability.context import generate_run_id
from .observability.logging import configure_logging
from .observability.tracing import init_tracing
from .runtime.signals import install_shutdown_signals
from .scheduler import CrawlScheduler, CrawlSummary
from .store import CrawlStore, DatabaseCriticalError


logger = logging.getLogger(__name__)

EXIT_INTERRUPTED = 130


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tropes-crawler",
        description="Crawl the wiki into a local SQLite store, resuming from any previous run.",
    )
    parser.add_argument("--db", dest="db_path", help="SQLite store path (default: tvtropes.db)")
    parser.add_argument("--max-workers", type=int, help="Concurrent worker ceiling (default: CPU count)")
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        help="Root log level (default: info)",
    )
    logs = parser.add_mutually_exclusive_group()
    logs.add_argument("--json-logs", dest="json_logs", action="store_true", default=None, help="Structured JSON logs")
    logs.add_argument("--text-logs", dest="json_logs", action="store_false", help="Plain-text logs")
    parser.add_argument("--error-log", dest="error_log_path", help="File the error sink is flushed to")
    parser.add_argument("--metrics-file", dest="metrics_textfile", help="Write a Prometheus textfile on exit")
    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Environment-backed settings with every flag that was given layered on top."""
    overrides: dict[str, Any] = {key: value for key, value in vars(args).items() if value is not None}
    return Settings(**overrides)


async def crawl(settings: Settings, *, shutdown_event: asyncio.Event | None = None) -> CrawlSummary:
    """Run one crawl to completion or interruption against ``settings.db_path``."""
    store = CrawlStore(settings.db_path)
    try:
        async with Fetcher(settings) as fetcher:
            scheduler = CrawlScheduler(
                settings,
                store,
                fetcher,
                shutdown_event=shutdown_event,
                run_id=generate_run_id(),
            )
            summary = await scheduler.run()
    finally:
        store.close()

    counts = store.counts()
    logger.info("Store %s holds %d pages and %d links", settings.db_path, counts["pages"], counts["links"])
    return summary


async def _main_async(settings: Settings) -> CrawlSummary:
    shutdown_event = install_shutdown_signals()
    return await crawl(settings, shutdown_event=shutdown_event)


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_argument_parser()
    args = parser.parse_args(argv)

    try:
        settings = settings_from_args(args)
    except ValidationError as exc:
        configure_logging()
        logger.error("Invalid configuration: %s", exc)
        return 1

    configure_logging(settings.log_level, json_output=settings.json_logs)
    init_tracing()
    logger.info(
        "Starting crawl of %s into %s with %d workers", settings.host, settings.db_path, settings.max_workers
    )

    try:
        summary = asyncio.run(_main_async(settings))
    except DatabaseCriticalError as exc:
        logger.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED

    return EXIT_INTERRUPTED if summary.interrupted else 0


if __name__ == "__main__":
    sys.exit(main())
