"""In-memory token-bucket rate limiter for the authorize and token endpoints.

Each app builds its own limiter from settings; buckets are keyed by client IP.
"""

from __future__ import annotations

import threading
import time

__all__ = ["RateLimiter"]


class _Bucket:
    """A single token bucket for one client."""

    __slots__ = ("tokens", "last_refill")

    def __init__(self, capacity: float, now: float):
        self.tokens: float = capacity
        self.last_refill: float = now


class RateLimiter:
    """Token-bucket rate limiter keyed by client identifier.

    Parameters
    ----------
    rate : float
        Tokens added per second.
    capacity : int
        Maximum burst size (bucket capacity).
    max_age : float
        Buckets idle for longer than this many seconds are dropped.
    cleanup_every : int
        Stale buckets are pruned once per this many ``allow`` calls.
    """

    def __init__(
        self, rate: float, capacity: int, max_age: float = 3600.0, cleanup_every: int = 1000
    ):
        self.rate = rate
        self.capacity = capacity
        self.max_age = max_age
        self.cleanup_every = cleanup_every
        self._buckets: dict[str, _Bucket] = {}
        self._calls = 0
        self._lock = threading.Lock()

    def allow(self, key: str) -> bool:
        """Return True if the request is allowed, consuming one token."""
        now = time.monotonic()
        with self._lock:
            self._calls += 1
            if self._calls >= self.cleanup_every:
                self._calls = 0
                self._prune(now, self.max_age)

            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = self._buckets[key] = _Bucket(self.capacity, now)

            elapsed = now - bucket.last_refill
            bucket.tokens = min(self.capacity, bucket.tokens + elapsed * self.rate)
            bucket.last_refill = now

            if bucket.tokens >= 1.0:
                bucket.tokens -= 1.0
                return True
            return False

    def retry_after(self, key: str) -> float:
        """Seconds until *key* has a whole token again (0 if it already does)."""
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None or self.rate <= 0:
                return 0.0 if bucket is None or bucket.tokens >= 1.0 else float("inf")
            elapsed = time.monotonic() - bucket.last_refill
            tokens = min(self.capacity, bucket.tokens + elapsed * self.rate)
        return max(0.0, (1.0 - tokens) / self.rate)

    def cleanup(self, max_age: float | None = None) -> int:
        """Remove stale entries older than *max_age* seconds. Returns count removed."""
        now = time.monotonic()
        with self._lock:
            return self._prune(now, self.max_age if max_age is None else max_age)

    def _prune(self, now: float, max_age: float) -> int:
        # Caller holds self._lock.
        stale = [k for k, b in self._buckets.items() if now - b.last_refill > max_age]
        for k in stale:
            del self._buckets[k]
        return len(stale)
