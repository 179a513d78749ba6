"""
Rate limiting utilities for rgbd-vo.

Used to throttle repetitive log events on the per-frame path.
"""

import time
from threading import Lock


class RateLimiter:
    """
    Rate limiter for controlling execution frequency.

    Thread-safe implementation using monotonic clock.

    Example:
        limiter = RateLimiter(rate_hz=1)

        if limiter.should_run():
            logger.info("reference_not_set", features=n)
    """

    def __init__(self, rate_hz: float) -> None:
        """
        Initialize rate limiter.

        Args:
            rate_hz: Target rate in Hz (executions per second).
        """
        if rate_hz <= 0:
            raise ValueError("rate_hz must be positive")

        self._interval_s = 1.0 / rate_hz
        self._last_time: float = float("-inf")
        self._lock = Lock()

    @property
    def interval_s(self) -> float:
        """Minimum interval between executions in seconds."""
        return self._interval_s

    def should_run(self) -> bool:
        """
        Check if enough time has passed since last execution.

        Returns:
            True if rate limit allows execution, False otherwise.
        """
        current_time = time.monotonic()

        with self._lock:
            if current_time - self._last_time >= self._interval_s:
                self._last_time = current_time
                return True
            return False

    def reset(self) -> None:
        """Reset the rate limiter, allowing immediate execution."""
        with self._lock:
            self._last_time = float("-inf")
