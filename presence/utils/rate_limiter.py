# ==============================================================================
# Token Bucket Rate Limiter
# ==============================================================================
"""
Async token bucket rate limiter for upstream membership requests.

Provides a configurable sustained requests/sec rate using the classic token
bucket algorithm.  Tokens accumulate at a fixed rate up to a burst cap;
each ``acquire()`` call consumes tokens, sleeping when the bucket is empty.
Concurrent waiters are served in arrival order.

Usage::

    limiter = TokenBucketRateLimiter(rate=50 / 60, burst=5)
    await limiter.acquire()          # waits until a token is available
    members = await transport.fetch_members(group_id)
"""

import asyncio
import time


class TokenBucketRateLimiter:
    """Rate limiter using the token bucket algorithm.

    Args:
        rate: Target requests per second.
        burst: Maximum burst size (tokens the bucket can hold).
            Defaults to ``max(int(rate * 0.1), 1)``.
    """

    def __init__(self, rate: float, burst: int | None = None) -> None:
        if rate <= 0:
            raise ValueError(f"rate must be positive, got {rate}")

        self.rate = rate
        self.burst = burst if burst is not None else max(int(rate * 0.1), 1)

        # Start with a full bucket so the first burst goes through immediately.
        self._tokens: float = float(self.burst)
        self._last_refill: float = time.monotonic()
        self._lock = asyncio.Lock()

    @property
    def available(self) -> float:
        """Tokens currently in the bucket."""
        self._refill()
        return self._tokens

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def acquire(self, count: int = 1) -> float:
        """Wait until *count* tokens are available, then consume them.

        Args:
            count: Number of tokens to consume (default 1).

        Returns:
            Total seconds spent waiting (0.0 if tokens were available
            immediately).
        """
        if count > self.burst:
            raise ValueError(f"count {count} exceeds burst {self.burst}")

        async with self._lock:
            self._refill()
            waited = 0.0

            while self._tokens < count:
                deficit = count - self._tokens
                sleep_time = min(deficit / self.rate, 0.05)
                await asyncio.sleep(sleep_time)
                waited += sleep_time
                self._refill()

            self._tokens -= count
            return waited

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _refill(self) -> None:
        """Add tokens based on elapsed time since the last refill."""
        now = time.monotonic()
        elapsed = now - self._last_refill
        self._last_refill = now
        self._tokens = min(self._tokens + elapsed * self.rate, float(self.burst))
