"""
In-Memory Rate Limiter
======================
Fixed-window counters held in process memory.
"""

import threading
import time
from typing import Dict, Tuple

from .models import RateLimitInfo


class InMemoryRateLimiter:
    """
    Fixed-window rate limiter for a single process.

    Increment-and-compare runs under a lock, so concurrent checks for the
    same key can never admit more than `limit` requests per window.
    Buckets whose window has ended are swept at most once per
    `sweep_interval` seconds.
    Use RedisRateLimiter when counters must be shared between processes.
    """

    def __init__(self, clock=time.time, sweep_interval: int = 60):
        """
        Args:
            clock: Callable returning the current Unix time (injectable for tests)
            sweep_interval: Seconds between sweeps of expired buckets
        """
        self._clock = clock
        # key -> (window_start, count, expires_at)
        self._buckets: Dict[str, Tuple[int, int, int]] = {}
        self._lock = threading.Lock()
        self._sweep_interval = sweep_interval
        self._next_sweep = clock() + sweep_interval

    def __len__(self) -> int:
        return len(self._buckets)

    async def check(self, key: str, limit: int, window: int) -> RateLimitInfo:
        """
        Count a request against a key if quota remains.

        Args:
            key: Unique bucket identifier
            limit: Requests allowed per window
            window: Window size in seconds

        Returns:
            RateLimitInfo with decision and quota
        """
        now = self._clock()
        window_start = int(now // window) * window
        reset_at = window_start + window

        with self._lock:
            if now >= self._next_sweep:
                self._sweep(now)

            saved_window, count, _ = self._buckets.get(key, (window_start, 0, reset_at))

            # Reset if new window
            if saved_window < window_start:
                count = 0

            if count >= limit:
                # Rejected requests are not counted
                return RateLimitInfo(
                    allowed=False,
                    remaining=0,
                    limit=limit,
                    reset_at=reset_at,
                    retry_after=max(1, reset_at - int(now)),
                    window=window,
                )

            count += 1
            self._buckets[key] = (window_start, count, reset_at)

        return RateLimitInfo(
            allowed=True,
            remaining=limit - count,
            limit=limit,
            reset_at=reset_at,
            window=window,
        )

    def _sweep(self, now: float) -> None:
        # Caller holds the lock
        expired = [key for key, (_, _, expires_at) in self._buckets.items() if expires_at <= now]
        for key in expired:
            del self._buckets[key]
        self._next_sweep = now + self._sweep_interval

    def reset(self, key: str) -> None:
        """Drop a bucket (e.g. after a successful login)."""
        with self._lock:
            self._buckets.pop(key, None)
