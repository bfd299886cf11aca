"""
gatekeeper.sources.rate_limit — Rate-Limited Source Client
============================================================

Wraps any :class:`~gatekeeper.sources.base.AssetSource` with the provider
etiquette configured in ``config.yaml``:

* **Interval limiter** — request start times are spaced at least
  ``1 / max_requests_per_second`` apart, across every caller sharing the
  wrapper.
* **Concurrency cap** — at most ``batch_size`` upstream calls in flight.
* **Coalescing** — concurrent identical requests share one upstream call.
* **Response cache** — successful pages are reused for ``cache_ttl`` seconds.
* **Single retry** — a throttling response (HTTP 429) is retried once after
  ``retry_delay`` seconds; a second 429 surfaces as
  :class:`~gatekeeper.errors.SourceUnavailable`.

The limiter clock and the cache are guarded by ``threading.Lock`` so a
wrapper may be shared by the bot loop and ``run_db`` worker threads.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Awaitable, Callable

from gatekeeper.config import SourceSettings
from gatekeeper.errors import SourceRateLimited, SourceUnavailable
from gatekeeper.sources.base import AssetSource, PageRequest, SourcePage

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]


# ---------------------------------------------------------------------------
# Interval limiter
# ---------------------------------------------------------------------------
class IntervalLimiter:
    """Hands out request start slots no closer than ``1 / rate`` seconds."""

    def __init__(
        self,
        rate: float,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._interval = 1.0 / rate if rate > 0 else 0.0
        self._clock = clock
        self._sleep = sleep
        self._next_slot = 0.0
        self._lock = threading.Lock()

    @property
    def interval(self) -> float:
        return self._interval

    def reserve(self) -> float:
        """Claim the next slot and return how long to wait for it."""
        with self._lock:
            now = self._clock()
            slot = max(now, self._next_slot)
            self._next_slot = slot + self._interval
        return slot - now

    async def acquire(self) -> None:
        delay = self.reserve()
        if delay > 0:
            await self._sleep(delay)


# ---------------------------------------------------------------------------
# Response cache
# ---------------------------------------------------------------------------
class ResponseCache:
    """Time-bounded cache of successful pages keyed by :class:`PageRequest`."""

    def __init__(self, ttl: float, *, clock: Clock = time.monotonic) -> None:
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[PageRequest, tuple[float, SourcePage]] = {}
        self._lock = threading.Lock()

    def get(self, key: PageRequest) -> SourcePage | None:
        if self._ttl <= 0:
            return None
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, page = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return page

    def put(self, key: PageRequest, page: SourcePage) -> None:
        if self._ttl <= 0:
            return
        with self._lock:
            now = self._clock()
            self._entries[key] = (now + self._ttl, page)
            # Opportunistic sweep so one-off wallets don't accumulate
            stale = [k for k, (exp, _) in self._entries.items() if exp <= now]
            for k in stale:
                del self._entries[k]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# ---------------------------------------------------------------------------
# Wrapper
# ---------------------------------------------------------------------------
class RateLimitedSource:
    """An :class:`AssetSource` that enforces one provider's rate policy."""

    def __init__(
        self,
        inner: AssetSource,
        settings: SourceSettings,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.inner = inner
        self.name = inner.name
        self.page_delay = settings.page_delay
        self._retry_delay = settings.retry_delay
        self._sleep = sleep
        self._limiter = IntervalLimiter(
            settings.max_requests_per_second, clock=clock, sleep=sleep,
        )
        self._cache = ResponseCache(settings.cache_ttl, clock=clock)
        self._max_in_flight = max(1, settings.batch_size)
        self._semaphore: asyncio.Semaphore | None = None
        self._inflight: dict[PageRequest, asyncio.Future[SourcePage]] = {}
        self.upstream_calls = 0

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    def supports_collection_scope(self, collection_id: str) -> bool:
        return self.inner.supports_collection_scope(collection_id)

    async def fetch_page(self, request: PageRequest) -> SourcePage:
        cached = self._cache.get(request)
        if cached is not None:
            return cached

        pending = self._inflight.get(request)
        if pending is not None:
            return await asyncio.shield(pending)

        task = asyncio.ensure_future(self._fetch_with_retry(request))
        self._inflight[request] = task
        try:
            return await asyncio.shield(task)
        finally:
            if self._inflight.get(request) is task:
                del self._inflight[request]

    async def _fetch_with_retry(self, request: PageRequest) -> SourcePage:
        try:
            page = await self._call_upstream(request)
        except SourceRateLimited:
            logger.warning(
                "%s throttled page %d for %s; retrying in %.1fs",
                self.name, request.page, request.wallet, self._retry_delay,
            )
            await self._sleep(self._retry_delay)
            try:
                page = await self._call_upstream(request)
            except SourceRateLimited as exc:
                raise SourceUnavailable(
                    f"{self.name} is still throttling after a retry",
                    source=self.name,
                ) from exc
        self._cache.put(request, page)
        return page

    async def _call_upstream(self, request: PageRequest) -> SourcePage:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self._max_in_flight)
        async with self._semaphore:
            await self._limiter.acquire()
            self.upstream_calls += 1
            return await self.inner.fetch_page(request)

    async def aclose(self) -> None:
        close = getattr(self.inner, "aclose", None)
        if close is not None:
            await close()
