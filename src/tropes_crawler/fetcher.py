"""HTTP fetcher with indefinite rate-limit backoff.

The target host answers 403 when it is rate limiting. That is treated as a
flow-control signal, not an error: the fetcher sleeps and retries the same
URL until it gets any other response. Transport failures are surfaced as
:class:`FetchError` so the calling worker can log and abandon the item.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
import logging
import random

import httpx

from .config import Settings
from .observability.metrics import RATE_LIMITED, REQUESTS


logger = logging.getLogger(__name__)

RATE_LIMIT_STATUS = 403


class FetchError(Exception):
    """Transport-level failure (connect, reset, timeout) for a single URL."""

    def __init__(self, url: str, cause: Exception):
        super().__init__(f"{url} failed with {cause} ({type(cause).__name__})")
        self.url = url
        self.cause = cause


@dataclass
class BackoffPolicy:
    """Exponential backoff with jitter for consecutive rate-limit responses."""

    base_delay: float = 30.0
    max_delay: float = 600.0
    multiplier: float = 2.0
    jitter: float = 0.2  # +/-20% so many workers do not retry in lock-step

    def delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        exponent = min(max(0, attempt - 1), 32)
        raw = self.base_delay * (self.multiplier**exponent)
        capped = min(self.max_delay, raw)
        return capped * random.uniform(1.0 - self.jitter, 1.0 + self.jitter)


@dataclass
class FetchStats:
    requests: int = 0
    rate_limited: int = 0
    failures: int = 0
    last_delay: float = 0.0
    delays: deque = field(default_factory=lambda: deque(maxlen=100))


class Fetcher:
    """Issue GET requests against the target host.

    Redirects are not followed here; the page worker walks redirect chains
    itself so it can record alias identities.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        backoff: BackoffPolicy | None = None,
    ):
        self.settings = settings or Settings()
        self.backoff = backoff or BackoffPolicy(
            base_delay=self.settings.rate_limit_base_delay,
            max_delay=self.settings.rate_limit_max_delay,
        )
        self.client = client
        self._owns_client = client is None
        self.stats = FetchStats()

    async def __aenter__(self) -> Fetcher:
        if self.client is None:
            self.client = self._create_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.client is not None and self._owns_client:
            await self.client.aclose()
            self.client = None

    def _create_client(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(self.settings.http_timeout, connect=10.0)
        headers = {
            "User-Agent": self.settings.get_user_agent(),
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en,en-US;q=0.9",
            "Accept-Encoding": "gzip, deflate",
            "Connection": "keep-alive",
        }
        return httpx.AsyncClient(
            timeout=timeout,
            headers=headers,
            follow_redirects=False,
            verify=True,
        )

    async def fetch(self, url: str) -> httpx.Response:
        """GET ``url``, sleeping through any number of rate-limit responses.

        Raises:
            FetchError: on connection, read or timeout failures.
        """
        if self.client is None:
            raise RuntimeError("Fetcher must be used as async context manager")

        attempt = 0
        while True:
            try:
                response = await self.client.get(url)
            except httpx.TransportError as exc:
                self.stats.failures += 1
                REQUESTS.labels(outcome="transport_error").inc()
                raise FetchError(url, exc) from exc

            self.stats.requests += 1
            if response.status_code != RATE_LIMIT_STATUS:
                REQUESTS.labels(outcome=str(response.status_code)).inc()
                return response

            attempt += 1
            self.stats.rate_limited += 1
            RATE_LIMITED.inc()
            delay = self.backoff.delay(attempt)
            self.stats.last_delay = delay
            self.stats.delays.append(delay)
            logger.warning("Rate limited on %s (attempt %d), backing off %.1fs", url, attempt, delay)
            await asyncio.sleep(delay)

    def get_stats(self) -> dict:
        """Request and backoff counters for progress reporting."""
        recent = list(self.stats.delays)
        return {
            "requests": self.stats.requests,
            "rate_limited": self.stats.rate_limited,
            "failures": self.stats.failures,
            "last_delay": self.stats.last_delay,
            "recent_mean_delay": sum(recent) / len(recent) if recent else 0.0,
        }
