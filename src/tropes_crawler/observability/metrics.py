"""Prometheus metrics for crawl throughput and backpressure."""

from __future__ import annotations

from contextlib import contextmanager
import logging
from pathlib import Path
import time
from typing import TYPE_CHECKING

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    write_to_textfile,
)


if TYPE_CHECKING:
    from collections.abc import Generator


logger = logging.getLogger(__name__)


REQUESTS = Counter(
    "crawler_requests_total",
    "HTTP requests issued, by outcome (status code or transport_error)",
    ["outcome"],
)

RATE_LIMITED = Counter(
    "crawler_rate_limited_total",
    "Responses treated as rate limiting",
)

PAGES_PERSISTED = Counter(
    "crawler_pages_persisted_total",
    "Page records committed to the store",
)

LINKS_PERSISTED = Counter(
    "crawler_links_persisted_total",
    "Link edges committed to the store",
)

PERSIST_FAILURES = Counter(
    "crawler_persist_failures_total",
    "Failed persistence transactions, by outcome (requeued or dead_letter)",
    ["outcome"],
)

WORKER_ERRORS = Counter(
    "crawler_worker_errors_total",
    "Work items abandoned by a worker",
    ["stage"],
)

QUEUE_DEPTH = Gauge(
    "crawler_queue_depth",
    "Items waiting in each work queue",
    ["stage"],
)

ACTIVE_WORKERS = Gauge(
    "crawler_active_workers",
    "Workers currently running per stage",
    ["stage"],
)

WORKER_LATENCY = Histogram(
    "crawler_worker_seconds",
    "Wall time of one worker run",
    ["stage"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 300.0),
)


@contextmanager
def track_latency(histogram: Histogram, **labels: str) -> Generator[None, None, None]:
    """Context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        histogram.labels(**labels).observe(time.perf_counter() - start)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()


def write_metrics_textfile(path: Path | str) -> None:
    """Write the registry in textfile-collector format for node_exporter."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    write_to_textfile(str(target), REGISTRY)
    logger.info("Wrote metrics snapshot to %s", target)
