"""Shared crawl state: work queues, the visited set, and the error sink."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from pathlib import Path
import threading
from typing import Any

import orjson

from .models import ListingTask, NamespaceTask, PageTask, PersistTask, QueueDepths, Stage


logger = logging.getLogger(__name__)

WorkItem = ListingTask | NamespaceTask | PageTask | PersistTask

_STAGE_BY_TYPE: dict[type, Stage] = {
    ListingTask: Stage.LISTING,
    NamespaceTask: Stage.NAMESPACE,
    PageTask: Stage.PAGE,
    PersistTask: Stage.PERSIST,
}


class WorkQueues:
    """Four independent FIFO queues, one per stage.

    Any worker may push; only the scheduler-dispatched worker of a stage pops
    its own queue. ``pop`` never blocks and returns ``None`` when empty.
    """

    def __init__(self) -> None:
        self._queues: dict[Stage, asyncio.Queue[Any]] = {stage: asyncio.Queue() for stage in Stage}

    def push(self, item: WorkItem) -> None:
        self._queues[_STAGE_BY_TYPE[type(item)]].put_nowait(item)

    def pop(self, stage: Stage) -> Any | None:
        try:
            return self._queues[stage].get_nowait()
        except asyncio.QueueEmpty:
            return None

    def depth(self, stage: Stage) -> int:
        return self._queues[stage].qsize()

    def depths(self) -> QueueDepths:
        return QueueDepths(
            listing=self.depth(Stage.LISTING),
            namespace=self.depth(Stage.NAMESPACE),
            page=self.depth(Stage.PAGE),
            persist=self.depth(Stage.PERSIST),
        )

    def total(self) -> int:
        return sum(queue.qsize() for queue in self._queues.values())

    def empty(self) -> bool:
        return self.total() == 0


class VisitedSet:
    """Lock-guarded set of canonical URLs.

    ``add`` is an atomic add-if-absent: of any number of concurrent inserts of
    the same URL, exactly one returns ``True``.
    """

    def __init__(self) -> None:
        self._urls: set[str] = set()
        self._lock = threading.Lock()

    def add(self, url: str) -> bool:
        with self._lock:
            if url in self._urls:
                return False
            self._urls.add(url)
            return True

    def update(self, urls: set[str] | list[str]) -> None:
        with self._lock:
            self._urls.update(urls)

    def __contains__(self, url: object) -> bool:
        with self._lock:
            return url in self._urls

    def __len__(self) -> int:
        with self._lock:
            return len(self._urls)


@dataclass(frozen=True, slots=True)
class ErrorEntry:
    """A single diagnostic accumulated during the crawl."""

    timestamp: str
    source: str
    message: str
    detail: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"timestamp": self.timestamp, "source": self.source, "message": self.message}
        if self.detail:
            payload["detail"] = self.detail
        return payload


class ErrorSink:
    """Append-only error log shared by every worker, decoupled from rendering."""

    def __init__(self) -> None:
        self._entries: list[ErrorEntry] = []
        self._flushed = 0
        self._lock = threading.Lock()

    def append(self, source: str, message: str, **detail: Any) -> ErrorEntry:
        entry = ErrorEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            source=source,
            message=message,
            detail=detail or None,
        )
        with self._lock:
            self._entries.append(entry)
        return entry

    def tail(self, count: int = 5) -> list[ErrorEntry]:
        with self._lock:
            return self._entries[-count:] if count > 0 else []

    def entries(self) -> list[ErrorEntry]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def flush(self, path: Path | str) -> int:
        """Append entries not yet flushed to ``path`` as JSON lines; return how many were written."""
        with self._lock:
            pending = self._entries[self._flushed :]
            self._flushed = len(self._entries)
        if not pending:
            return 0
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("ab") as handle:
            for entry in pending:
                handle.write(orjson.dumps(entry.to_dict(), default=str) + b"\n")
        logger.info("Flushed %d error entries to %s", len(pending), target)
        return len(pending)
