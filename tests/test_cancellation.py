"""Tests for CancellationToken."""

import threading
import time

import pytest

from pubmed_gateway import CancellationToken, CancelledError


class TestCancellationToken:

    def test_cancel(self):
        """Test cancel flips the token."""
        token = CancellationToken()
        assert not token.is_cancelled()

        token.cancel()

        assert token.is_cancelled()
        with pytest.raises(CancelledError):
            token.raise_if_cancelled()

    def test_deadline(self, clock):
        """Test a passed deadline counts as cancellation."""
        token = CancellationToken.with_timeout(10, clock=clock)
        assert token.remaining() == pytest.approx(10)

        clock.advance(11)

        assert token.is_cancelled()
        assert token.remaining() == 0

    def test_bound_timeout(self, clock):
        """Test timeouts are capped by the remaining budget."""
        token = CancellationToken.with_timeout(5, clock=clock)

        assert token.bound_timeout(30) == pytest.approx(5)
        assert CancellationToken().bound_timeout(30) == 30

    def test_wait_wakes_on_cancel(self):
        """Test a waiting thread wakes as soon as the token is cancelled."""
        token = CancellationToken()
        threading.Timer(0.05, token.cancel).start()

        start = time.monotonic()
        assert token.wait(5.0) is True
        assert time.monotonic() - start < 2.0

    def test_reset(self):
        """Test reset clears cancellation and deadline."""
        token = CancellationToken(deadline=0)
        token.cancel()

        token.reset()

        assert not token.is_cancelled()
