"""Tests for resilience patterns (ExponentialBackoff, CircuitBreaker, RateLimiter)."""

import asyncio
import time

import pytest

from auction_collector.core.config import CollectorSettings
from auction_collector.core.resilience import CircuitBreaker, ExponentialBackoff, RateLimiter


# ═══════════════════════════════════════════
# ExponentialBackoff Tests
# ═══════════════════════════════════════════


class TestExponentialBackoff:
    def test_should_retry_within_limit(self):
        backoff = ExponentialBackoff(max_retries=3)
        assert backoff.should_retry(0) is True
        assert backoff.should_retry(2) is True
        assert backoff.should_retry(3) is False

    def test_delay_capped_at_max(self):
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=10.0, max_retries=10)
        # Even with jitter, should not exceed max_delay + 25%
        assert backoff.delay(100) <= 10.0 * 1.25

    def test_delay_never_negative(self):
        backoff = ExponentialBackoff(base_delay=0.1, max_delay=1.0, max_retries=3)
        for attempt in range(10):
            assert backoff.delay(attempt) >= 0

    def test_no_jitter_is_exact(self):
        backoff = ExponentialBackoff(base_delay=0.5, max_delay=10.0, jitter=0)
        assert [backoff.delay(n) for n in range(4)] == [0.5, 1.0, 2.0, 4.0]

    def test_throttled_delay_exceeds_normal_cap(self):
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=10.0)
        assert backoff.throttled_delay(10, factor=4) == 40.0
        assert backoff.throttled_delay(0, factor=4) == 4.0

    def test_throttled_delay_honors_retry_after(self):
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=10.0)
        assert backoff.throttled_delay(0, factor=2, retry_after=90) == 90
        assert backoff.throttled_delay(3, factor=2, retry_after=1) == 16.0

    def test_from_settings(self):
        settings = CollectorSettings(backoff_base=2.0, backoff_max=30.0, max_retries=7)
        backoff = ExponentialBackoff.from_settings(settings)
        assert (backoff.base_delay, backoff.max_delay, backoff.max_retries) == (2.0, 30.0, 7)


# ═══════════════════════════════════════════
# CircuitBreaker Tests
# ═══════════════════════════════════════════


class TestCircuitBreaker:
    def test_opens_after_threshold(self):
        cb = CircuitBreaker(failure_threshold=3)
        assert cb.record_failure("copart") is False
        assert cb.record_failure("copart") is False
        assert cb.is_open("copart") is False  # 2 < 3
        assert cb.record_failure("copart") is True
        assert cb.is_open("copart") is True

    def test_providers_independent(self):
        cb = CircuitBreaker(failure_threshold=2)
        cb.record_failure("copart")
        cb.record_failure("copart")
        assert cb.is_open("copart") is True
        assert cb.is_open("iaai") is False
        assert cb.remaining("iaai") == 0.0

    def test_remaining_counts_down(self):
        cb = CircuitBreaker(failure_threshold=1, cooldown=10.0)
        cb.record_failure("iaai")
        first = cb.remaining("iaai")
        assert 9.0 < first <= 10.0
        time.sleep(0.02)
        assert cb.remaining("iaai") < first

    def test_further_failures_do_not_extend_open_window(self):
        cb = CircuitBreaker(failure_threshold=1, cooldown=10.0)
        cb.record_failure("iaai")
        time.sleep(0.02)
        assert cb.record_failure("iaai") is False
        assert cb.remaining("iaai") < 10.0 - 0.015
        assert cb.failures("iaai") == 2

    def test_success_closes_circuit(self):
        cb = CircuitBreaker(failure_threshold=1)
        cb.record_failure("iaai")
        cb.record_success("iaai")
        assert cb.is_open("iaai") is False
        assert cb.failures("iaai") == 0

    def test_cooldown_resets_circuit(self):
        cb = CircuitBreaker(failure_threshold=2, cooldown=0.1)
        cb.record_failure("iaai")
        cb.record_failure("iaai")
        assert cb.is_open("iaai") is True
        time.sleep(0.15)
        assert cb.is_open("iaai") is False
        assert cb.failures("iaai") == 0

    def test_soonest_retry_picks_shortest_open_window(self):
        cb = CircuitBreaker(failure_threshold=1, cooldown=10.0)
        cb.record_failure("copart")
        time.sleep(0.05)
        cb.record_failure("iaai")
        soonest = cb.soonest_retry(["copart", "iaai"])
        assert soonest == pytest.approx(cb.remaining("copart"), abs=0.01)
        assert soonest < cb.remaining("iaai")

    def test_soonest_retry_zero_when_all_closed(self):
        assert CircuitBreaker().soonest_retry(["copart", "iaai"]) == 0.0


# ═══════════════════════════════════════════
# RateLimiter Tests
# ═══════════════════════════════════════════


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_first_request_not_delayed(self):
        limiter = RateLimiter(min_interval=10)
        assert await limiter.acquire() == 0.0

    @pytest.mark.asyncio
    async def test_zero_interval_disables_limiting(self):
        limiter = RateLimiter(min_interval=0)
        for _ in range(5):
            assert await limiter.acquire() == 0.0

    @pytest.mark.asyncio
    async def test_spacing_between_requests(self):
        limiter = RateLimiter(min_interval=0.05)
        start = time.monotonic()
        for _ in range(3):
            await limiter.acquire()
        assert time.monotonic() - start >= 0.09

    @pytest.mark.asyncio
    async def test_second_request_reports_wait(self):
        limiter = RateLimiter(min_interval=0.05)
        await limiter.acquire()
        assert await limiter.acquire() > 0

    @pytest.mark.asyncio
    async def test_concurrent_callers_serialized(self):
        limiter = RateLimiter(min_interval=0.03)
        stamps = []

        async def call():
            await limiter.acquire()
            stamps.append(time.monotonic())

        await asyncio.gather(*(call() for _ in range(3)))
        stamps.sort()
        gaps = [b - a for a, b in zip(stamps, stamps[1:])]
        assert all(gap >= 0.025 for gap in gaps)

    @pytest.mark.asyncio
    async def test_waiting_does_not_block_event_loop(self):
        limiter = RateLimiter(min_interval=0.1)
        await limiter.acquire()
        ticks = 0

        async def ticker():
            nonlocal ticks
            while True:
                ticks += 1
                await asyncio.sleep(0.01)

        task = asyncio.create_task(ticker())
        await limiter.acquire()
        task.cancel()
        assert ticks >= 3

    @pytest.mark.asyncio
    async def test_separate_limiters_do_not_share_budget(self):
        copart = RateLimiter(min_interval=10, name="copart")
        iaai = RateLimiter(min_interval=10, name="iaai")
        assert await copart.acquire() == 0.0
        assert await iaai.acquire() == 0.0
