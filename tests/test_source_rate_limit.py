"""
tests/test_source_rate_limit.py — Provider throttling wrapper
===============================================================
Spacing, single retry on 429, response cache, request coalescing and the
in-flight cap of :class:`RateLimitedSource`.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from conftest import item, run_async
from gatekeeper.config import SourceSettings
from gatekeeper.errors import SourceRateLimited, SourceUnavailable
from gatekeeper.sources.base import PageRequest, SourcePage
from gatekeeper.sources.rate_limit import IntervalLimiter, RateLimitedSource, ResponseCache

WALLET = "WaLLet1111111111111111111111111111111111111"


def _settings(**overrides) -> SourceSettings:
    values = dict(
        name="helius", base_url="https://h", max_requests_per_second=10.0,
        batch_size=5, retry_delay=2.0, cache_ttl=60.0,
    )
    values.update(overrides)
    return SourceSettings(**values)


class ScriptedSource:
    """Replays a list of outcomes (pages or exceptions) in order."""

    name = "helius"

    def __init__(self, *outcomes, delay: float = 0.0) -> None:
        self.outcomes = list(outcomes)
        self.delay = delay
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    def supports_collection_scope(self, collection_id: str) -> bool:
        return False

    async def fetch_page(self, request: PageRequest) -> SourcePage:
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            outcome = self.outcomes.pop(0) if self.outcomes else SourcePage()
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        finally:
            self.in_flight -= 1


PAGE = SourcePage(items=(item("A"),))


class TestIntervalLimiter:
    def test_slots_are_spaced_by_interval(self):
        limiter = IntervalLimiter(4.0, clock=lambda: 100.0)
        assert limiter.interval == 0.25
        assert [limiter.reserve() for _ in range(3)] == [0.0, 0.25, 0.5]

    def test_idle_time_is_not_banked(self):
        now = [0.0]
        limiter = IntervalLimiter(2.0, clock=lambda: now[0])
        limiter.reserve()
        now[0] = 10.0
        assert limiter.reserve() == 0.0
        assert limiter.reserve() == 0.5

    def test_acquire_sleeps_for_the_reserved_delay(self):
        sleep = AsyncMock()
        limiter = IntervalLimiter(5.0, clock=lambda: 0.0, sleep=sleep)
        run_async(limiter.acquire())
        run_async(limiter.acquire())
        sleep.assert_awaited_once_with(0.2)


class TestResponseCache:
    def test_entries_expire(self):
        now = [0.0]
        cache = ResponseCache(10.0, clock=lambda: now[0])
        key = PageRequest(wallet=WALLET)
        cache.put(key, PAGE)
        assert cache.get(key) is PAGE
        now[0] = 10.0
        assert cache.get(key) is None
        assert len(cache) == 0

    def test_zero_ttl_disables_cache(self):
        cache = ResponseCache(0)
        cache.put(PageRequest(wallet=WALLET), PAGE)
        assert len(cache) == 0


class TestRateLimitedSource:
    def test_cached_page_skips_upstream(self):
        inner = ScriptedSource(PAGE)
        source = RateLimitedSource(inner, _settings(), sleep=AsyncMock())
        request = PageRequest(wallet=WALLET)

        async def _inner():
            first = await source.fetch_page(request)
            second = await source.fetch_page(request)
            return first, second

        first, second = run_async(_inner())
        assert first is second is PAGE
        assert inner.calls == 1
        assert source.upstream_calls == 1

    def test_throttled_call_is_retried_once(self):
        inner = ScriptedSource(SourceRateLimited("429", source="helius"), PAGE)
        sleep = AsyncMock()
        source = RateLimitedSource(inner, _settings(retry_delay=3.0), sleep=sleep)
        page = run_async(source.fetch_page(PageRequest(wallet=WALLET)))
        assert page is PAGE
        assert inner.calls == 2
        sleep.assert_any_await(3.0)

    def test_second_throttle_becomes_unavailable(self):
        inner = ScriptedSource(
            SourceRateLimited("429", source="helius"),
            SourceRateLimited("429", source="helius"),
            PAGE,
        )
        source = RateLimitedSource(inner, _settings(), sleep=AsyncMock())
        with pytest.raises(SourceUnavailable) as excinfo:
            run_async(source.fetch_page(PageRequest(wallet=WALLET)))
        assert excinfo.value.code == "source_unavailable"
        assert inner.calls == 2
        assert len(source.cache) == 0

    def test_other_failures_are_not_retried(self):
        inner = ScriptedSource(SourceUnavailable("HTTP 500", source="helius"), PAGE)
        source = RateLimitedSource(inner, _settings(), sleep=AsyncMock())
        with pytest.raises(SourceUnavailable):
            run_async(source.fetch_page(PageRequest(wallet=WALLET)))
        assert inner.calls == 1

    def test_identical_concurrent_requests_share_one_call(self):
        inner = ScriptedSource(PAGE, delay=0.01)
        source = RateLimitedSource(inner, _settings(cache_ttl=0), sleep=AsyncMock())
        request = PageRequest(wallet=WALLET)

        async def _inner():
            return await asyncio.gather(*(source.fetch_page(request) for _ in range(4)))

        pages = run_async(_inner())
        assert all(page is PAGE for page in pages)
        assert inner.calls == 1

    def test_in_flight_calls_are_capped(self):
        inner = ScriptedSource(*[PAGE] * 6, delay=0.01)
        source = RateLimitedSource(inner, _settings(batch_size=2), sleep=AsyncMock())

        async def _inner():
            await asyncio.gather(*(
                source.fetch_page(PageRequest(wallet=WALLET, page=n)) for n in range(1, 7)
            ))

        run_async(_inner())
        assert inner.calls == 6
        assert inner.max_in_flight <= 2

    def test_requests_are_spaced(self):
        inner = ScriptedSource(PAGE, PAGE, PAGE)
        sleep = AsyncMock()
        source = RateLimitedSource(
            inner, _settings(max_requests_per_second=2.0), clock=lambda: 0.0, sleep=sleep,
        )

        async def _inner():
            for n in (1, 2, 3):
                await source.fetch_page(PageRequest(wallet=WALLET, page=n))

        run_async(_inner())
        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]
