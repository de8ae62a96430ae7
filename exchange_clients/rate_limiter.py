"""
Per-venue request throttling.

Token bucket sized to ``max_requests`` refilled over ``window_seconds``.
Callers either wait for a token or fail fast with ``RateLimitExceededError``.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Optional

from exchange_clients.base_models import RateLimitExceededError


class VenueRateLimiter:
    """
    Async token bucket for one venue.

    Args:
        venue: Venue name (used in error messages)
        max_requests: Bucket capacity (requests per window)
        window_seconds: Time for an empty bucket to refill completely
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        venue: str,
        max_requests: int,
        window_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests <= 0 or window_seconds <= 0:
            raise ValueError("max_requests and window_seconds must be positive")

        self.venue = venue
        self.max_tokens = float(max_requests)
        self.refill_rate = max_requests / window_seconds
        self._clock = clock
        self._tokens = float(max_requests)
        self._last_refill = clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(self.max_tokens, self._tokens + elapsed * self.refill_rate)
            self._last_refill = now

    def try_acquire(self) -> bool:
        """Take a token if one is available right now."""
        self._refill()
        if self._tokens >= 1:
            self._tokens -= 1
            return True
        return False

    def time_until_available(self) -> float:
        self._refill()
        if self._tokens >= 1:
            return 0.0
        return (1 - self._tokens) / self.refill_rate

    async def acquire(self, *, block: bool = True, max_wait: Optional[float] = None) -> None:
        """
        Take one token.

        Args:
            block: Wait for a free token. When False, raise immediately.
            max_wait: Give up (raise) if the wait would exceed this many seconds.

        Raises:
            RateLimitExceededError: No token available within the allowed wait.
        """
        async with self._lock:
            while True:
                if self.try_acquire():
                    return

                delay = self.time_until_available()
                if not block or (max_wait is not None and delay > max_wait):
                    raise RateLimitExceededError(
                        f"Rate limit reached for {self.venue} (next slot in {delay:.2f}s)",
                        venue=self.venue,
                    )
                await asyncio.sleep(delay)

    @property
    def available_tokens(self) -> float:
        self._refill()
        return self._tokens
