"""
Cooperative cancellation for long-running gateway operations.

A CancellationToken is passed down through rate-limiter waits, open-access
probes, downloads and pacing delays. Work checks the token between steps and
sleeps through `wait()` so a cancel wakes it immediately. An optional deadline
turns the token into a time budget for a whole batch.
"""

import threading
import time
from typing import Callable, Optional

from .exceptions import CancelledError


class CancellationToken:
    """
    Thread-safe cancellation token with an optional deadline.

    Examples:
        >>> token = CancellationToken.with_timeout(60)
        >>> token.wait(2.0)      # sleeps, returns True early if cancelled
        >>> token.raise_if_cancelled()
    """

    def __init__(
        self,
        deadline: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            deadline: Absolute time (in `clock` units) after which the token
                counts as cancelled. None = no deadline.
            clock: Monotonic clock used to evaluate the deadline
        """
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._clock = clock
        self.deadline = deadline

    @classmethod
    def with_timeout(cls, seconds: float, clock: Callable[[], float] = time.monotonic) -> "CancellationToken":
        """Create a token that expires `seconds` from now."""
        return cls(deadline=clock() + seconds, clock=clock)

    def cancel(self) -> None:
        """Signal that cancellation has been requested."""
        with self._lock:
            self._event.set()

    def is_cancelled(self) -> bool:
        """True once cancel() was called or the deadline has passed."""
        if self._event.is_set():
            return True
        if self.deadline is not None and self._clock() >= self.deadline:
            self.cancel()
            return True
        return False

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None without a deadline."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - self._clock())

    def bound_timeout(self, timeout: float) -> float:
        """Shrink `timeout` so it does not run past the deadline."""
        remaining = self.remaining()
        if remaining is None:
            return timeout
        return min(timeout, remaining)

    def wait(self, seconds: float) -> bool:
        """
        Sleep up to `seconds`, waking early on cancellation.

        Returns:
            True if the token is cancelled when the wait ends
        """
        if seconds > 0:
            self._event.wait(self.bound_timeout(seconds))
        return self.is_cancelled()

    def raise_if_cancelled(self, what: str = "operation") -> None:
        """Raise CancelledError if the token is cancelled."""
        if self.is_cancelled():
            raise CancelledError(f"{what} cancelled")

    def reset(self) -> None:
        """Reset the token to its initial state (tests and controlled reuse only)."""
        with self._lock:
            self._event.clear()
            self.deadline = None
