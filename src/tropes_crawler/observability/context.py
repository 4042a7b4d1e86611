"""Context propagation for log correlation across worker tasks."""

from __future__ import annotations

from contextvars import ContextVar
from uuid import uuid4


# Each asyncio task copies the context at creation, so workers inherit the run id
crawl_context: ContextVar[dict | None] = ContextVar("crawl_context", default=None)


def generate_run_id() -> str:
    """Generate a 32-char hex run ID."""
    return uuid4().hex


def get_crawl_context() -> dict:
    """Get current crawl context, creating a run id on first use."""
    ctx = crawl_context.get()
    if ctx is None or not ctx.get("run_id"):
        ctx = {"run_id": generate_run_id()}
        crawl_context.set(ctx)
    return ctx


def set_crawl_context(run_id: str, **extra: object) -> None:
    """Set crawl context for the current task."""
    crawl_context.set({"run_id": run_id, **extra})


def bind_stage(stage: str, url: str | None = None) -> None:
    """Attach the active stage (and URL) while preserving run_id."""
    ctx = get_crawl_context()
    updated = {**ctx, "stage": stage}
    if url:
        updated["url"] = url
    crawl_context.set(updated)
