"""Shared test fixtures: isolated settings, a fake wiki site and a crawl store."""

from __future__ import annotations

import os
from pathlib import Path
import sys

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from tests.fixtures.fake_site import FakeSite  # noqa: E402
from tropes_crawler.config import Settings  # noqa: E402
from tropes_crawler.fetcher import Fetcher  # noqa: E402
from tropes_crawler.store import CrawlStore  # noqa: E402


# Proxies and stray CRAWLER_* values from the developer's shell must not leak into tests
_CLEARED_ENV = ("http_proxy", "https_proxy", "all_proxy", "HTTP_PROXY", "HTTPS_PROXY", "ALL_PROXY")


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for key in list(os.environ):
        if key.upper().startswith("CRAWLER_"):
            monkeypatch.delenv(key, raising=False)
    for key in _CLEARED_ENV:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        db_path=str(tmp_path / "crawl.db"),
        error_log_path=str(tmp_path / "error.log"),
        max_workers=4,
        listing_page_count=1,
        poll_interval=0.01,
        progress_interval=60.0,
        rate_limit_base_delay=0.01,
        rate_limit_max_delay=0.02,
        user_agent="tropes-crawler-tests/1.0",
    )


@pytest.fixture
def site() -> FakeSite:
    return FakeSite()


@pytest.fixture
async def fetcher(settings, site):
    client = site.client()
    try:
        yield Fetcher(settings, client=client)
    finally:
        await client.aclose()


@pytest.fixture
def store(settings):
    crawl_store = CrawlStore(settings.db_path)
    try:
        yield crawl_store
    finally:
        crawl_store.close()


def pytest_collection_modifyitems(config, items):
    """Mark tests by directory so ``-m unit`` and ``-m integration`` select them."""
    for item in items:
        parts = item.path.parts
        if "unit" in parts:
            item.add_marker(pytest.mark.unit)
        elif "integration" in parts:
            item.add_marker(pytest.mark.integration)
