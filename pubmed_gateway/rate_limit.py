"""
Minimum-interval rate limiter for the PubMed E-utilities API.

NCBI allows 3 requests/second without an API key and 10 with one. Every
upstream call goes through the single RateLimiter owned by the gateway
context, so consecutive dispatches are always at least `min_interval` apart
regardless of which operation issued them.
"""

import logging
import threading
import time
from typing import Callable, Optional

from .cancellation import CancellationToken

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 0.334  # 3 requests/second
API_KEY_INTERVAL = 0.1  # 10 requests/second


class RateLimiter:
    """
    Serializes upstream dispatches with a fixed minimum spacing.

    The lock is held across the wait, so callers are admitted strictly in
    arrival order and no two callers can observe the same free slot.
    """

    def __init__(
        self,
        min_interval: float = DEFAULT_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            min_interval: Seconds between consecutive dispatches
            clock: Monotonic clock (injectable for tests)
            sleep: Sleep function used when no cancellation token is given
        """
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last_dispatch: Optional[float] = None
        self._lock = threading.Lock()
        self.total_waits = 0
        self.total_wait_time = 0.0

    @classmethod
    def for_api_key(cls, api_key: Optional[str], **kwargs) -> "RateLimiter":
        """Rate limiter matching NCBI's quota for the given credentials."""
        interval = API_KEY_INTERVAL if api_key else DEFAULT_INTERVAL
        return cls(min_interval=interval, **kwargs)

    def acquire(self, cancel_token: Optional[CancellationToken] = None) -> None:
        """
        Block until the next dispatch slot is free, then claim it.

        Raises:
            CancelledError: If the token is cancelled while waiting
        """
        with self._lock:
            if self._last_dispatch is not None:
                wait_time = self.min_interval - (self._clock() - self._last_dispatch)
                if wait_time > 0:
                    logger.debug(f"Rate limiting: waiting {wait_time:.3f}s")
                    self.total_waits += 1
                    self.total_wait_time += wait_time
                    if cancel_token is not None:
                        if cancel_token.wait(wait_time):
                            cancel_token.raise_if_cancelled("rate-limited request")
                    else:
                        self._sleep(wait_time)
            self._last_dispatch = self._clock()

    def get_stats(self) -> dict:
        return {
            'min_interval': self.min_interval,
            'total_waits': self.total_waits,
            'total_wait_time': round(self.total_wait_time, 3),
        }
