"""
Provides an adaptive rate limiter to avoid 429 "Too Many Requests" answers from
metadata services.
"""

import asyncio
import logging
import time
from typing import Optional

log = logging.getLogger(__name__)


class AdaptiveRateLimiter:
    """
    Dynamically adjusts call rate based on server feedback (429 answers).
    """

    def __init__(
        self, initial_calls_per_second: float = 10.0, max_calls_per_second: float = 20.0
    ):
        """
        Initializes the rate limiter.

        Args:
            initial_calls_per_second: The starting rate of calls per second.
            max_calls_per_second: The maximum rate to recover to.
        """
        self._rate = initial_calls_per_second
        self._max_rate = max_calls_per_second
        self._min_interval = 1.0 / self._rate
        self._last_call_time = 0.0
        self._last_429_time = 0.0
        self._blocked_until = 0.0
        self._lock = asyncio.Lock()

    @property
    def rate(self) -> float:
        return self._rate

    async def on_429(self, retry_after: Optional[float] = None) -> None:
        """
        Called when a 429 is received. Halves the current request rate and, when
        the server sent `Retry-After`, holds every caller back until then.
        """
        async with self._lock:
            self._rate = max(1.0, self._rate * 0.5)
            self._min_interval = 1.0 / self._rate
            self._last_429_time = time.monotonic()
            if retry_after:
                self._blocked_until = max(
                    self._blocked_until, time.monotonic() + retry_after
                )
            log.warning(
                f"[yellow]Rate limit hit. New rate: {self._rate:.1f} calls/s[/yellow]"
            )

    async def acquire(self) -> None:
        """
        Waits if necessary to respect the current rate limit before allowing a
        call to proceed.
        """
        async with self._lock:
            now = time.monotonic()
            if now - self._last_429_time > 300:
                self._rate = min(self._max_rate, self._rate * 1.005)
                self._min_interval = 1.0 / self._rate

            wait = max(
                self._blocked_until - now,
                self._min_interval - (now - self._last_call_time),
            )
            if wait > 0:
                await asyncio.sleep(wait)
            self._last_call_time = time.monotonic()


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parses a `Retry-After` header given in seconds; dates are ignored."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None
