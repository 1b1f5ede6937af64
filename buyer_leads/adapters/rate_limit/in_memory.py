"""In-memory token bucket rate limiter.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
- Buckets are created lazily and never expire.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from buyer_leads.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult


@dataclass
class _Bucket:
    tokens: int
    last_refill_ms: float


class InMemoryTokenBucketRateLimiter(AbstractRateLimiter):
    """Token bucket limiter keyed by arbitrary strings.

    Each key holds up to ``capacity`` tokens. Every full ``window_ms`` that has
    elapsed since the last refill adds one token back (capped at capacity), and
    the refill mark advances by whole windows only so partial windows are not
    lost to drift.

    Important:
        This limiter is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce its
        own independent limits.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        """Initialize the limiter.

        Args:
            clock: Time source function returning UNIX time in seconds.
        """
        self._clock = clock
        self._lock = threading.RLock()
        self._buckets: dict[str, _Bucket] = {}

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def _get_bucket(self, key: str, capacity: int, now_ms: float) -> _Bucket:
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = _Bucket(tokens=capacity, last_refill_ms=now_ms)
            self._buckets[key] = bucket
        return bucket

    @staticmethod
    def _refill(bucket: _Bucket, capacity: int, window_ms: int, now_ms: float) -> None:
        elapsed = now_ms - bucket.last_refill_ms
        if elapsed > window_ms:
            windows = math.floor(elapsed / window_ms)
            bucket.tokens = min(capacity, bucket.tokens + windows)
            bucket.last_refill_ms += windows * window_ms

    def consume(self, key: str, *, capacity: int, window_ms: int) -> RateLimitResult:
        """Consume one token for ``key`` if available.

        Never raises; a non-positive capacity simply denies every call.

        Args:
            key: Bucket key.
            capacity: Maximum tokens per bucket.
            window_ms: Refill window in milliseconds.

        Returns:
            RateLimitResult with allowance decision and metadata.
        """
        now_ms = self._now_ms()
        window_ms = max(1, window_ms)

        with self._lock:
            bucket = self._get_bucket(key, capacity, now_ms)
            self._refill(bucket, capacity, window_ms, now_ms)

            if bucket.tokens <= 0:
                wait_ms = window_ms - (now_ms - bucket.last_refill_ms)
                return RateLimitResult(
                    allowed=False,
                    limit=capacity,
                    remaining=0,
                    retry_after_seconds=max(1, int(math.ceil(wait_ms / 1000))),
                )

            bucket.tokens -= 1
            return RateLimitResult(
                allowed=True,
                limit=capacity,
                remaining=bucket.tokens,
                retry_after_seconds=None,
            )

    def reset(self) -> None:
        """Drop all buckets."""
        with self._lock:
            self._buckets.clear()
