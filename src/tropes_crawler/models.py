"""Data models flowing between crawl stages."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum


class Stage(str, Enum):
    """Work stages in scheduler priority order."""

    PERSIST = "persist"
    LISTING = "listing"
    NAMESPACE = "namespace"
    PAGE = "page"


@dataclass(frozen=True, slots=True)
class PageRecord:
    """One crawled article identity, written to the ``pages`` table."""

    namespace: str | None
    id: str | None
    http_status: int
    title: str | None = None
    alias_of_namespace: str | None = None
    alias_of_id: str | None = None

    @property
    def key(self) -> tuple[str | None, str | None]:
        return (self.namespace, self.id)

    @property
    def is_alias(self) -> bool:
        return self.alias_of_namespace is not None or self.alias_of_id is not None

    def as_row(self) -> tuple[str | None, str | None, int, str | None, str | None, str | None]:
        return (
            self.namespace,
            self.id,
            self.http_status,
            self.title,
            self.alias_of_namespace,
            self.alias_of_id,
        )


@dataclass(frozen=True, slots=True)
class LinkEdge:
    """Directed reference from a canonical article to another article."""

    source_namespace: str
    source_id: str
    target_namespace: str
    target_id: str

    def as_row(self) -> tuple[str, str, str, str]:
        return (self.source_namespace, self.source_id, self.target_namespace, self.target_id)


@dataclass(frozen=True, slots=True)
class ListingTask:
    url: str


@dataclass(frozen=True, slots=True)
class NamespaceTask:
    url: str


@dataclass(frozen=True, slots=True)
class PageTask:
    url: str


@dataclass(frozen=True, slots=True)
class PersistTask:
    """A page record bundled with the link edges it owns.

    ``attempts`` counts failed commits; the persistence worker uses it to
    decide between re-queueing and dead-lettering.
    """

    record: PageRecord
    links: frozenset[LinkEdge] = field(default_factory=frozenset)
    attempts: int = 0

    def retried(self) -> PersistTask:
        return replace(self, attempts=self.attempts + 1)


@dataclass(frozen=True, slots=True)
class QueueDepths:
    """Point-in-time snapshot of the four work queues."""

    listing: int = 0
    namespace: int = 0
    page: int = 0
    persist: int = 0

    @property
    def total(self) -> int:
        return self.listing + self.namespace + self.page + self.persist
