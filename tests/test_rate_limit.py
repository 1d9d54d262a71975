"""Tests for RateLimiter."""

import threading
import time

import pytest

from pubmed_gateway import CancellationToken, CancelledError
from pubmed_gateway.rate_limit import API_KEY_INTERVAL, DEFAULT_INTERVAL, RateLimiter


class FakeTime:
    """Clock whose sleep advances the clock."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def clock(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class TestRateLimiterSpacing:
    """Test minimum spacing between dispatches."""

    def test_first_acquire_does_not_wait(self):
        """Test the first call goes straight through."""
        t = FakeTime()
        limiter = RateLimiter(0.334, clock=t.clock, sleep=t.sleep)

        limiter.acquire()

        assert t.sleeps == []

    def test_back_to_back_calls_are_spaced(self):
        """Test consecutive dispatch times differ by at least the interval."""
        t = FakeTime()
        limiter = RateLimiter(0.334, clock=t.clock, sleep=t.sleep)
        dispatched = []

        for _ in range(5):
            limiter.acquire()
            dispatched.append(t.now)

        gaps = [b - a for a, b in zip(dispatched, dispatched[1:])]
        assert all(gap >= 0.334 - 1e-9 for gap in gaps)
        assert dispatched[-1] - dispatched[0] >= 4 * 0.334 - 1e-9

    def test_no_wait_after_idle_period(self):
        """Test no sleep when the interval already elapsed."""
        t = FakeTime()
        limiter = RateLimiter(0.334, clock=t.clock, sleep=t.sleep)

        limiter.acquire()
        t.now += 1.0
        limiter.acquire()

        assert t.sleeps == []

    def test_partial_wait(self):
        """Test only the remaining part of the interval is slept."""
        t = FakeTime()
        limiter = RateLimiter(0.5, clock=t.clock, sleep=t.sleep)

        limiter.acquire()
        t.now += 0.2
        limiter.acquire()

        assert t.sleeps == [pytest.approx(0.3)]

    def test_concurrent_callers_are_serialized(self):
        """Test N threads sharing one limiter take at least (N-1) intervals."""
        limiter = RateLimiter(0.05)

        threads = [threading.Thread(target=limiter.acquire) for _ in range(4)]
        start = time.monotonic()
        for th in threads:
            th.start()
        for th in threads:
            th.join()

        assert time.monotonic() - start >= 3 * 0.05 - 0.005


class TestRateLimiterConfig:
    """Test construction helpers."""

    def test_interval_from_api_key(self):
        """Test API key raises the allowed request rate."""
        assert RateLimiter.for_api_key(None).min_interval == DEFAULT_INTERVAL
        assert RateLimiter.for_api_key("secret").min_interval == API_KEY_INTERVAL

    def test_negative_interval_rejected(self):
        """Test negative intervals are rejected."""
        with pytest.raises(ValueError):
            RateLimiter(-1)

    def test_stats(self):
        """Test wait statistics are tracked."""
        t = FakeTime()
        limiter = RateLimiter(1.0, clock=t.clock, sleep=t.sleep)
        limiter.acquire()
        limiter.acquire()

        stats = limiter.get_stats()
        assert stats['total_waits'] == 1
        assert stats['total_wait_time'] == pytest.approx(1.0)


class TestRateLimiterCancellation:
    """Test cancellation while waiting."""

    def test_cancelled_token_aborts_wait(self):
        """Test a cancelled token raises instead of dispatching."""
        limiter = RateLimiter(10.0)
        limiter.acquire()
        token = CancellationToken()
        token.cancel()

        start = time.monotonic()
        with pytest.raises(CancelledError):
            limiter.acquire(token)
        assert time.monotonic() - start < 1.0
