"""SQLite-backed store for crawled pages and link edges."""

from __future__ import annotations

from collections.abc import Iterable
import logging
from pathlib import Path
import sqlite3
import threading
import time

from .models import LinkEdge, PageRecord


logger = logging.getLogger(__name__)


class DatabaseCriticalError(RuntimeError):
    """Unrecoverable database error; the store file cannot be opened."""


# Maximum retries for self-healing connection attempts
_MAX_CONNECT_RETRIES = 3
_RETRY_DELAY_SECONDS = 0.5

SCHEMA = """
CREATE TABLE IF NOT EXISTS pages (
    namespace TEXT,
    id TEXT,
    http_status INTEGER,
    title TEXT NULL,
    alias_of_namespace TEXT NULL,
    alias_of_id TEXT NULL
);
CREATE TABLE IF NOT EXISTS links (
    namespace TEXT,
    id TEXT,
    link_namespace TEXT,
    link_id TEXT
);
CREATE INDEX IF NOT EXISTS idx_pages_identity ON pages (namespace, id);
CREATE INDEX IF NOT EXISTS idx_links_target ON links (link_namespace, link_id);
CREATE INDEX IF NOT EXISTS idx_links_source ON links (namespace, id);
"""

_INSERT_PAGE = "INSERT INTO pages VALUES (?, ?, ?, ?, ?, ?)"
_INSERT_LINK = "INSERT INTO links VALUES (?, ?, ?, ?)"
_DANGLING_LINKS = """
    SELECT DISTINCT link_namespace, link_id
    FROM links
    WHERE NOT EXISTS (
        SELECT 1 FROM pages WHERE pages.namespace = links.link_namespace AND pages.id = links.link_id
    )
"""


def apply_read_pragmas(conn: sqlite3.Connection, *, busy_timeout_ms: int = 30000) -> None:
    conn.execute(f"PRAGMA busy_timeout = {busy_timeout_ms}")
    conn.execute("PRAGMA cache_size = -65536")
    conn.execute("PRAGMA temp_store = MEMORY")
    conn.execute("PRAGMA query_only = 1")


def apply_write_pragmas(conn: sqlite3.Connection, *, busy_timeout_ms: int = 30000) -> None:
    conn.execute(f"PRAGMA busy_timeout = {busy_timeout_ms}")
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.execute("PRAGMA cache_size = -65536")
    conn.execute("PRAGMA temp_store = MEMORY")


class CrawlStore:
    """Persist ``pages`` and ``links`` rows; read them back to resume a crawl.

    Writes go through a single long-lived connection. Only one persistence
    worker runs at a time, so the connection is never shared by concurrent
    transactions; ``_write_lock`` only guards its lazy creation.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self._write_conn: sqlite3.Connection | None = None
        self._write_lock = threading.Lock()
        self._initialize_schema()

    def _connect(self, *, read_only: bool = False) -> sqlite3.Connection:
        """Connect to SQLite, retrying transient failures with exponential backoff."""
        last_error: sqlite3.Error | None = None

        for attempt in range(_MAX_CONNECT_RETRIES):
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                if read_only:
                    conn = sqlite3.connect(
                        f"file:{self.db_path.as_posix()}?mode=ro", uri=True, check_same_thread=False
                    )
                    apply_read_pragmas(conn)
                else:
                    # Autocommit mode: transactions are opened explicitly with BEGIN
                    conn = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
                    apply_write_pragmas(conn)
                return conn
            except sqlite3.Error as exc:
                last_error = exc
                if attempt < _MAX_CONNECT_RETRIES - 1:
                    delay = _RETRY_DELAY_SECONDS * (2**attempt)
                    logger.warning(
                        "SQLite connect attempt %d/%d failed for %s: %s. Retrying in %.1fs...",
                        attempt + 1,
                        _MAX_CONNECT_RETRIES,
                        self.db_path,
                        exc,
                        delay,
                    )
                    time.sleep(delay)

        logger.critical("Unable to open database at %s after %d attempts: %s", self.db_path, _MAX_CONNECT_RETRIES, last_error)
        raise DatabaseCriticalError(
            f"Unable to open database at {self.db_path} after {_MAX_CONNECT_RETRIES} attempts: {last_error}"
        )

    def _initialize_schema(self) -> None:
        conn = self._connect()
        try:
            conn.executescript(SCHEMA)
        finally:
            conn.close()

    def _writer(self) -> sqlite3.Connection:
        with self._write_lock:
            if self._write_conn is None:
                self._write_conn = self._connect()
            return self._write_conn

    def close(self) -> None:
        with self._write_lock:
            if self._write_conn is not None:
                self._write_conn.close()
                self._write_conn = None

    # Writes

    def persist(self, record: PageRecord, links: Iterable[LinkEdge] = ()) -> None:
        """Insert a page row and its link rows in one transaction.

        On any error the transaction is rolled back and the error re-raised,
        so a page row is never committed without its links.
        """
        conn = self._writer()
        conn.execute("BEGIN")
        try:
            self._insert_page(conn, record)
            self._insert_links(conn, record, links)
            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise

    def _insert_page(self, conn: sqlite3.Connection, record: PageRecord) -> None:
        conn.execute(_INSERT_PAGE, record.as_row())

    def _insert_links(self, conn: sqlite3.Connection, record: PageRecord, links: Iterable[LinkEdge]) -> None:
        conn.executemany(_INSERT_LINK, [link.as_row() for link in links])

    # Reads

    def load_pages(self) -> list[PageRecord]:
        conn = self._connect(read_only=True)
        try:
            rows = conn.execute(
                "SELECT namespace, id, http_status, title, alias_of_namespace, alias_of_id FROM pages"
            ).fetchall()
        finally:
            conn.close()
        return [PageRecord(*row) for row in rows]

    def load_links(self) -> list[LinkEdge]:
        conn = self._connect(read_only=True)
        try:
            rows = conn.execute("SELECT namespace, id, link_namespace, link_id FROM links").fetchall()
        finally:
            conn.close()
        return [LinkEdge(*row) for row in rows]

    def dangling_links(self) -> list[tuple[str, str]]:
        """Distinct link targets that have no page row yet."""
        conn = self._connect(read_only=True)
        try:
            rows = conn.execute(_DANGLING_LINKS).fetchall()
        finally:
            conn.close()
        return [(row[0], row[1]) for row in rows if row[0] and row[1]]

    def counts(self) -> dict[str, int]:
        conn = self._connect(read_only=True)
        try:
            pages = conn.execute("SELECT COUNT(*) FROM pages").fetchone()[0]
            links = conn.execute("SELECT COUNT(*) FROM links").fetchone()[0]
        finally:
            conn.close()
        return {"pages": pages, "links": links}
