"""Tests for work queues, the visited set and the error sink."""

import asyncio
from concurrent.futures import ThreadPoolExecutor
import threading

import orjson
import pytest

from tropes_crawler.models import LinkEdge, ListingTask, NamespaceTask, PageRecord, PageTask, PersistTask, Stage
from tropes_crawler.state import ErrorSink, VisitedSet, WorkQueues


URL = "https://tvtropes.org/pmwiki/pmwiki.php/Main/Foo"


class TestWorkQueues:
    def test_push_routes_by_item_type(self):
        queues = WorkQueues()
        queues.push(ListingTask("l"))
        queues.push(NamespaceTask("n"))
        queues.push(PageTask("p1"))
        queues.push(PageTask("p2"))
        queues.push(PersistTask(PageRecord("Main", "Foo", 200)))

        depths = queues.depths()
        assert (depths.listing, depths.namespace, depths.page, depths.persist) == (1, 1, 2, 1)
        assert depths.total == queues.total() == 5

    def test_pop_is_fifo_and_returns_none_when_empty(self):
        queues = WorkQueues()
        queues.push(PageTask("first"))
        queues.push(PageTask("second"))

        assert queues.pop(Stage.PAGE) == PageTask("first")
        assert queues.pop(Stage.PAGE) == PageTask("second")
        assert queues.pop(Stage.PAGE) is None
        assert queues.pop(Stage.LISTING) is None
        assert queues.empty()

    def test_items_are_immutable(self):
        task = PersistTask(PageRecord("Main", "Foo", 200), frozenset({LinkEdge("Main", "Foo", "Main", "Bar")}))

        with pytest.raises(AttributeError):
            task.attempts = 3  # type: ignore[misc]
        retried = task.retried()
        assert retried.attempts == 1
        assert retried.record == task.record
        assert retried.links == task.links
        assert task.attempts == 0


class TestVisitedSet:
    @pytest.mark.parametrize("inserts", [1, 10, 1000])
    def test_concurrent_threaded_inserts_of_one_url_admit_exactly_one(self, inserts):
        visited = VisitedSet()
        start = threading.Barrier(min(inserts, 16))

        def insert(_):
            if inserts > 1:
                try:
                    start.wait(timeout=1)
                except threading.BrokenBarrierError:
                    pass
            return visited.add(URL)

        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(insert, range(inserts)))

        assert results.count(True) == 1
        assert len(visited) == 1

    @pytest.mark.parametrize("inserts", [1, 10, 1000])
    async def test_concurrent_async_inserts_of_one_url_admit_exactly_one(self, inserts):
        visited = VisitedSet()

        async def insert_in_task():
            await asyncio.sleep(0)
            return visited.add(URL)

        async def insert_in_thread():
            return await asyncio.to_thread(visited.add, URL)

        coroutines = [insert_in_thread() if index % 2 else insert_in_task() for index in range(inserts)]
        results = await asyncio.gather(*coroutines)

        assert results.count(True) == 1
        assert URL in visited

    def test_distinct_urls_are_all_admitted(self):
        visited = VisitedSet()

        assert all(visited.add(f"{URL}{index}") for index in range(100))
        assert len(visited) == 100

    def test_update_preloads_without_admission(self):
        visited = VisitedSet()
        visited.update([URL])

        assert URL in visited
        assert visited.add(URL) is False


class TestErrorSink:
    def test_append_and_tail(self):
        sink = ErrorSink()
        for index in range(7):
            sink.append("page", f"error {index}", url=f"u{index}")

        assert len(sink) == 7
        assert [entry.message for entry in sink.tail(3)] == ["error 4", "error 5", "error 6"]
        assert sink.tail(0) == []
        assert sink.entries()[0].detail == {"url": "u0"}

    def test_flush_appends_only_new_entries_as_json_lines(self, tmp_path):
        sink = ErrorSink()
        target = tmp_path / "logs" / "error.log"
        sink.append("listing", "boom", url="https://tvtropes.org/x")

        assert sink.flush(target) == 1
        assert sink.flush(target) == 0

        sink.append("persist.dead_letter", "disk I/O error")
        assert sink.flush(target) == 1

        lines = [orjson.loads(line) for line in target.read_bytes().splitlines()]
        assert [line["source"] for line in lines] == ["listing", "persist.dead_letter"]
        assert lines[0]["detail"] == {"url": "https://tvtropes.org/x"}
        assert "detail" not in lines[1]
        assert lines[0]["timestamp"]
