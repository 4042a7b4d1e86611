"""Crawl scheduler: stage selection, admission control, resumable seeding."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import time

from .config import Settings
from .fetcher import Fetcher
from .models import ListingTask, PageTask, QueueDepths, Stage
from .observability.context import get_crawl_context, set_crawl_context
from .observability.metrics import ACTIVE_WORKERS, QUEUE_DEPTH, WORKER_ERRORS, write_metrics_textfile
from .state import ErrorSink, VisitedSet, WorkQueues
from .store import CrawlStore
from .urls import alias_landing_url, article_url, listing_url
from .workers import StageWorkers


logger = logging.getLogger(__name__)


def choose_stage(
    depths: QueueDepths,
    persist_active: bool,
    listing_ratio: int,
    namespace_ratio: int,
) -> Stage | None:
    """Pick the stage to advance next, or ``None`` when nothing may be dispatched.

    Persistence always wins while no persistence worker is running. Listing
    and namespace are throttled so their downstream queue never grows beyond
    ``ratio`` times their own depth; pages are never throttled.
    """
    if depths.persist and not persist_active:
        return Stage.PERSIST
    if depths.listing and depths.namespace < listing_ratio * depths.listing:
        return Stage.LISTING
    if depths.namespace and depths.page < namespace_ratio * depths.namespace:
        return Stage.NAMESPACE
    if depths.page:
        return Stage.PAGE
    return None


@dataclass(frozen=True, slots=True)
class SeedSummary:
    visited: int
    dangling: int
    listing: int


@dataclass(frozen=True, slots=True)
class CrawlSummary:
    run_id: str
    visited: int
    errors: int
    interrupted: bool
    elapsed_seconds: float


class CrawlScheduler:
    """Single control loop that owns the queues and every worker task.

    The loop never blocks on I/O itself: it reaps finished tasks, dispatches
    at most one worker per tick, and waits on running workers only when the
    concurrency ceiling is reached or there is nothing it may dispatch.
    """

    def __init__(
        self,
        settings: Settings,
        store: CrawlStore,
        fetcher: Fetcher,
        *,
        shutdown_event: asyncio.Event | None = None,
        run_id: str | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.queues = WorkQueues()
        self.visited = VisitedSet()
        self.errors = ErrorSink()
        self.workers = StageWorkers(settings, fetcher, self.queues, self.errors, store)
        self.shutdown_event = shutdown_event or asyncio.Event()
        self.run_id = run_id
        self._active: dict[Stage, set[asyncio.Task]] = {stage: set() for stage in Stage}
        self._last_progress = 0.0

    # Seeding

    def seed(self) -> SeedSummary:
        """Rebuild the visited set from the store and queue the initial work.

        Dangling link targets resume an interrupted crawl; listing pages are
        seeded only when there is nothing dangling.
        """
        host = self.settings.host
        pages = self.store.load_pages()
        known: list[str] = []
        for record in pages:
            if record.namespace is None or record.id is None:
                continue
            known.append(article_url(record.namespace, record.id, host=host))
            landing = alias_landing_url(record, host=host)
            if landing is not None:
                known.append(landing)
        self.visited.update(known)

        dangling = self.store.dangling_links()
        for namespace, article_id in dangling:
            self.queues.push(PageTask(article_url(namespace, article_id, host=host)))

        listing = 0
        if not dangling:
            for number in range(1, self.settings.listing_page_count + 1):
                self.queues.push(ListingTask(listing_url(number, host=host)))
            listing = self.settings.listing_page_count

        summary = SeedSummary(visited=len(self.visited), dangling=len(dangling), listing=listing)
        logger.info(
            "Seeded crawl: %d visited URLs from %d stored pages, %d dangling links, %d listing pages",
            summary.visited,
            len(pages),
            summary.dangling,
            summary.listing,
        )
        return summary

    # Worker bookkeeping

    def active_count(self, stage: Stage | None = None) -> int:
        if stage is not None:
            return len(self._active[stage])
        return sum(len(tasks) for tasks in self._active.values())

    def _all_active(self) -> set[asyncio.Task]:
        return set().union(*self._active.values())

    def _dispatch(self, stage: Stage) -> bool:
        """Start one worker for ``stage``; page URLs already visited are dropped here."""
        item = None
        if stage is not Stage.PERSIST:
            item = self.queues.pop(stage)
            if item is None:
                return False
            if stage is Stage.PAGE and not self.visited.add(item.url):
                logger.debug("Skipping visited %s", item.url)
                return False

        task = asyncio.create_task(self.workers.run(stage, item), name=f"crawl-{stage.value}")
        self._active[stage].add(task)
        ACTIVE_WORKERS.labels(stage=stage.value).set(len(self._active[stage]))
        return True

    def _reap(self) -> None:
        for stage, tasks in self._active.items():
            finished = {task for task in tasks if task.done()}
            if not finished:
                continue
            tasks -= finished
            ACTIVE_WORKERS.labels(stage=stage.value).set(len(tasks))
            for task in finished:
                if task.cancelled():
                    continue
                exc = task.exception()
                if exc is not None:
                    logger.error("%s worker failed unexpectedly", stage.value, exc_info=exc)
                    self.errors.append(f"{stage.value}.crash", str(exc), error=type(exc).__name__)
                    WORKER_ERRORS.labels(stage=stage.value).inc()

    async def _wait_for_worker(self) -> None:
        active = self._all_active()
        if not active:
            await asyncio.sleep(self.settings.poll_interval)
            return
        await asyncio.wait(active, timeout=self.settings.poll_interval, return_when=asyncio.FIRST_COMPLETED)

    # Progress

    def log_progress(self) -> None:
        depths = self.queues.depths()
        for stage in Stage:
            QUEUE_DEPTH.labels(stage=stage.value).set(getattr(depths, stage.value))
        logger.info(
            "Queues listing=%d namespace=%d page=%d persist=%d | "
            "active listing=%d namespace=%d page=%d persist=%d | visited=%d errors=%d",
            depths.listing,
            depths.namespace,
            depths.page,
            depths.persist,
            self.active_count(Stage.LISTING),
            self.active_count(Stage.NAMESPACE),
            self.active_count(Stage.PAGE),
            self.active_count(Stage.PERSIST),
            len(self.visited),
            len(self.errors),
        )
        stats = self.workers.fetcher.get_stats()
        logger.info(
            "Fetcher requests=%d rate_limited=%d failures=%d last_backoff=%.1fs",
            stats["requests"],
            stats["rate_limited"],
            stats["failures"],
            stats["last_delay"],
        )

    def _maybe_log_progress(self) -> None:
        now = time.monotonic()
        if now - self._last_progress >= self.settings.progress_interval:
            self._last_progress = now
            self.log_progress()

    # Main loop

    async def run(self) -> CrawlSummary:
        """Seed, then dispatch workers until every queue is empty and no worker is active."""
        if self.run_id:
            set_crawl_context(self.run_id)
        run_id = get_crawl_context()["run_id"]
        started = time.monotonic()
        interrupted = False
        try:
            self.seed()
            interrupted = await self._loop()
        finally:
            if interrupted or self.active_count() or self.queues.depth(Stage.PERSIST):
                await self._drain_on_shutdown()
            self.log_progress()
            self._finish()

        summary = CrawlSummary(
            run_id=run_id,
            visited=len(self.visited),
            errors=len(self.errors),
            interrupted=interrupted,
            elapsed_seconds=time.monotonic() - started,
        )
        logger.info(
            "Crawl %s after %.1fs: %d URLs visited, %d errors",
            "interrupted" if interrupted else "finished",
            summary.elapsed_seconds,
            summary.visited,
            summary.errors,
        )
        return summary

    async def _loop(self) -> bool:
        """Run the dispatch loop; return ``True`` if it stopped on a shutdown request."""
        while True:
            self._reap()
            if self.shutdown_event.is_set():
                return True
            if self.queues.empty() and not self.active_count():
                return False

            self._maybe_log_progress()

            if self.active_count() >= self.settings.max_workers:
                await self._wait_for_worker()
                continue

            stage = choose_stage(
                self.queues.depths(),
                bool(self._active[Stage.PERSIST]),
                self.settings.listing_ratio,
                self.settings.namespace_ratio,
            )
            if stage is None:
                await self._wait_for_worker()
                continue

            self._dispatch(stage)
            # Let freshly created workers start before the next tick
            await asyncio.sleep(0)

    async def _drain_on_shutdown(self) -> None:
        """Cancel fetch-bound workers, then commit every record already queued for persistence."""
        fetching = set().union(*(self._active[stage] for stage in Stage if stage is not Stage.PERSIST))
        for task in fetching:
            task.cancel()
        persisting = set(self._active[Stage.PERSIST])
        if persisting:
            logger.info("Waiting for the active persistence worker to finish")
        await asyncio.gather(*fetching, *persisting, return_exceptions=True)
        self._reap()
        pending = self.queues.depth(Stage.PERSIST)
        if pending:
            logger.info("Committing %d queued records before exit", pending)
        while self.queues.depth(Stage.PERSIST):
            await self.workers.persist()

    def _finish(self) -> None:
        written = self.errors.flush(self.settings.error_log_path)
        if written:
            logger.warning("%d errors recorded during the crawl, see %s", written, self.settings.error_log_path)
        if self.settings.metrics_textfile:
            write_metrics_textfile(self.settings.metrics_textfile)
