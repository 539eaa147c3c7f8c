from __future__ import annotations

from dataclasses import dataclass
import threading
import time
from typing import Callable


@dataclass
class RateBucket:
    count: int
    reset_at: float


class RateLimiter:
    """Fixed-window request counter keyed by client.

    A bucket resets only once the clock passes ``reset_at``; there is no
    partial decay, so a burst straddling a window boundary is accepted.
    Expired buckets are swept at most once per window, so client keys
    that stop calling do not accumulate.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._buckets: dict[str, RateBucket] = {}
        self._lock = threading.Lock()
        self._next_sweep = 0.0

    def bucket_count(self) -> int:
        with self._lock:
            return len(self._buckets)

    def allow(self, key: str, limit: int, window_seconds: float) -> bool:
        now = self._clock()
        with self._lock:
            if now >= self._next_sweep:
                self._sweep(now)
                self._next_sweep = now + window_seconds
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = RateBucket(count=0, reset_at=now + window_seconds)
                self._buckets[key] = bucket
            if now > bucket.reset_at:
                bucket.count = 0
                bucket.reset_at = now + window_seconds
            bucket.count += 1
            return bucket.count <= limit

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()
            self._next_sweep = 0.0

    def _sweep(self, now: float) -> None:
        expired = [key for key, bucket in self._buckets.items() if now > bucket.reset_at]
        for key in expired:
            del self._buckets[key]
