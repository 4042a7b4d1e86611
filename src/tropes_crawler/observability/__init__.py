"""Observability helpers: structured logging, Prometheus metrics and OpenTelemetry spans."""

from tropes_crawler.observability.context import bind_stage, get_crawl_context, set_crawl_context
from tropes_crawler.observability.logging import JsonFormatter, configure_logging
from tropes_crawler.observability.metrics import (
    ACTIVE_WORKERS,
    QUEUE_DEPTH,
    get_metrics,
    track_latency,
    write_metrics_textfile,
)
from tropes_crawler.observability.tracing import create_span, get_tracer, init_tracing


__all__ = [
    "ACTIVE_WORKERS",
    "QUEUE_DEPTH",
    "JsonFormatter",
    "bind_stage",
    "configure_logging",
    "create_span",
    "get_crawl_context",
    "get_metrics",
    "get_tracer",
    "init_tracing",
    "set_crawl_context",
    "track_latency",
    "write_metrics_textfile",
]
