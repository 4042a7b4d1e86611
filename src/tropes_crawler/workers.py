"""Stage workers: listing, namespace, page and persistence.

Each coroutine here is one unit of work dispatched by the scheduler as its own
asyncio task. Workers talk to each other only through :class:`WorkQueues`.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3

from opentelemetry.trace import SpanKind

from .config import Settings
from .extraction import (
    extract_namespaces,
    extract_outbound_links,
    extract_pagination_info,
    extract_title,
    parse_html,
)
from .fetcher import Fetcher, FetchError
from .models import LinkEdge, ListingTask, NamespaceTask, PageRecord, PageTask, PersistTask, Stage
from .observability.context import bind_stage
from .observability.metrics import (
    LINKS_PERSISTED,
    PAGES_PERSISTED,
    PERSIST_FAILURES,
    WORKER_ERRORS,
    WORKER_LATENCY,
    track_latency,
)
from .observability.tracing import create_span
from .state import ErrorSink, WorkItem, WorkQueues
from .store import CrawlStore
from .urls import canonicalize, has_page_param, namespace_index_url, page_identity, strip_query


logger = logging.getLogger(__name__)


class StageWorkers:
    """Worker coroutines bound to the shared crawl state."""

    def __init__(
        self,
        settings: Settings,
        fetcher: Fetcher,
        queues: WorkQueues,
        errors: ErrorSink,
        store: CrawlStore,
    ) -> None:
        self.settings = settings
        self.fetcher = fetcher
        self.queues = queues
        self.errors = errors
        self.store = store

    def run(self, stage: Stage, item: WorkItem | None = None):
        """Coroutine for one dispatch of ``stage``; persistence ignores ``item``."""
        if stage is Stage.PERSIST:
            return self.persist()
        if stage is Stage.LISTING:
            return self.listing(item)
        if stage is Stage.NAMESPACE:
            return self.namespace(item)
        return self.page(item)

    def _abandon(self, stage: Stage, url: str, exc: FetchError) -> None:
        logger.warning("Abandoning %s task %s: %s", stage.value, url, exc.cause)
        self.errors.append(stage.value, str(exc), url=url, cause=type(exc.cause).__name__)
        WORKER_ERRORS.labels(stage=stage.value).inc()

    # Listing

    async def listing(self, task: ListingTask) -> int:
        """Fetch one article-count page and queue a namespace index per namespace found."""
        bind_stage(Stage.LISTING.value, task.url)
        with (
            create_span("crawl.listing", kind=SpanKind.CLIENT, attributes={"crawl.url": task.url}),
            track_latency(WORKER_LATENCY, stage=Stage.LISTING.value),
        ):
            try:
                response = await self.fetcher.fetch(task.url)
            except FetchError as exc:
                self._abandon(Stage.LISTING, task.url, exc)
                return 0

            namespaces = extract_namespaces(response.content)
            for name in namespaces:
                self.queues.push(NamespaceTask(namespace_index_url(name, host=self.settings.host)))
            logger.debug("Listing %s yielded %d namespaces", task.url, len(namespaces))
            return len(namespaces)

    # Namespace

    async def namespace(self, task: NamespaceTask) -> int:
        """Fetch one namespace index page, fan out its pagination and queue every article link."""
        bind_stage(Stage.NAMESPACE.value, task.url)
        with (
            create_span("crawl.namespace", kind=SpanKind.CLIENT, attributes={"crawl.url": task.url}),
            track_latency(WORKER_LATENCY, stage=Stage.NAMESPACE.value),
        ):
            try:
                response = await self.fetcher.fetch(task.url)
            except FetchError as exc:
                self._abandon(Stage.NAMESPACE, task.url, exc)
                return 0

            soup = parse_html(response.content)
            # Only the first page of an index fans out to the rest
            if not has_page_param(task.url):
                pagination = extract_pagination_info(soup)
                if pagination is not None:
                    for number in pagination.extra_pages:
                        self.queues.push(
                            NamespaceTask(canonicalize(f"{task.url}&page={number}", host=self.settings.host))
                        )

            hrefs = extract_outbound_links(soup)
            for href in hrefs:
                self.queues.push(PageTask(canonicalize(href, host=self.settings.host)))
            logger.debug("Namespace page %s yielded %d article links", task.url, len(hrefs))
            return len(hrefs)

    # Page

    async def page(self, task: PageTask) -> PersistTask | None:
        """Crawl one article and queue exactly one PersistTask for it.

        Redirects are followed by hand, up to ``max_redirects`` hops. A page
        whose redirects end at a different article is an alias: it is recorded
        under its own identity with no links, and the canonical target is
        queued so its links are attributed to the target instead. Redirects
        that stay on the same article are followed as a plain page.
        """
        bind_stage(Stage.PAGE.value, task.url)
        with (
            create_span("crawl.page", kind=SpanKind.CLIENT, attributes={"crawl.url": task.url}) as span,
            track_latency(WORKER_LATENCY, stage=Stage.PAGE.value),
        ):
            namespace, article_id = page_identity(task.url)
            if namespace is None or article_id is None:
                logger.debug("No article identity in %s", task.url)
                self.errors.append(Stage.PAGE.value, "URL has no article identity", url=task.url)

            final_url = task.url
            hops = 0
            try:
                response = await self.fetcher.fetch(task.url)
                status = response.status_code
                while response.is_redirect and hops < self.settings.max_redirects:
                    final_url = canonicalize(response.headers["location"], host=self.settings.host)
                    response = await self.fetcher.fetch(final_url)
                    hops += 1
            except FetchError as exc:
                self._abandon(Stage.PAGE, task.url, exc)
                return None

            span.set_attribute("crawl.redirect_hops", hops)
            if response.is_redirect:
                logger.warning("Redirect limit of %d reached for %s", self.settings.max_redirects, task.url)
                self.errors.append(
                    Stage.PAGE.value, "redirect limit reached", url=task.url, last_location=final_url, hops=hops
                )

            alias_namespace = alias_id = None
            if hops:
                final_identity = page_identity(final_url)
                if final_identity != (namespace, article_id):
                    alias_namespace, alias_id = final_identity
            is_alias = alias_namespace is not None or alias_id is not None

            # A redirect that was not followed has no article body
            body = b"" if response.is_redirect else response.content
            if not body.strip():
                record = PageRecord(namespace, article_id, status, None, alias_namespace, alias_id)
                return self._emit(PersistTask(record))

            soup = parse_html(body)
            title = extract_title(soup, alias=is_alias)
            if title is None:
                logger.debug("No title found on %s", final_url)
            record = PageRecord(namespace, article_id, status, title, alias_namespace, alias_id)

            if is_alias:
                canonical = strip_query(final_url)
                logger.debug("%s is an alias of %s", task.url, canonical)
                self.queues.push(PageTask(canonical))
                return self._emit(PersistTask(record))

            links: set[LinkEdge] = set()
            for href in extract_outbound_links(soup):
                target = canonicalize(href, host=self.settings.host)
                target_namespace, target_id = page_identity(target)
                if target_namespace is None or target_id is None:
                    logger.debug("Skipping link without article identity: %s", href)
                    continue
                self.queues.push(PageTask(target))
                if namespace is not None and article_id is not None:
                    links.add(LinkEdge(namespace, article_id, target_namespace, target_id))
            return self._emit(PersistTask(record, frozenset(links)))

    def _emit(self, task: PersistTask) -> PersistTask:
        self.queues.push(task)
        return task

    # Persistence

    async def persist(self) -> int:
        """Commit every PersistTask queued at dispatch time; return how many committed.

        Failed commits are re-queued behind the current batch, so a failing
        record is retried on a later dispatch rather than in a tight loop.
        """
        bind_stage(Stage.PERSIST.value)
        batch = self.queues.depth(Stage.PERSIST)
        committed = 0
        with (
            create_span("crawl.persist", attributes={"crawl.batch_size": batch}),
            track_latency(WORKER_LATENCY, stage=Stage.PERSIST.value),
        ):
            for _ in range(batch):
                task = self.queues.pop(Stage.PERSIST)
                if task is None:
                    break
                try:
                    await asyncio.to_thread(self.store.persist, task.record, task.links)
                except sqlite3.Error as exc:
                    self._persist_failed(task, exc)
                    continue
                committed += 1
                PAGES_PERSISTED.inc()
                LINKS_PERSISTED.inc(len(task.links))
        if committed:
            logger.debug("Committed %d of %d queued records", committed, batch)
        return committed

    def _persist_failed(self, task: PersistTask, exc: sqlite3.Error) -> None:
        retry = task.retried()
        namespace, article_id = task.record.key
        if retry.attempts < self.settings.max_persist_attempts:
            logger.error(
                "Persisting %s/%s failed (attempt %d of %d), re-queueing: %s",
                namespace,
                article_id,
                retry.attempts,
                self.settings.max_persist_attempts,
                exc,
            )
            self.errors.append(
                Stage.PERSIST.value, str(exc), namespace=namespace, id=article_id, attempts=retry.attempts
            )
            PERSIST_FAILURES.labels(outcome="requeued").inc()
            self.queues.push(retry)
            return

        logger.error(
            "Persisting %s/%s failed %d times, dead-lettering: %s", namespace, article_id, retry.attempts, exc
        )
        self.errors.append(
            f"{Stage.PERSIST.value}.dead_letter",
            str(exc),
            record=list(task.record.as_row()),
            links=[list(link.as_row()) for link in sorted(task.links, key=LinkEdge.as_row)],
            attempts=retry.attempts,
        )
        PERSIST_FAILURES.labels(outcome="dead_letter").inc()
