"""
Fixed-window request counters.

`FixedWindowRateLimiter` is injected into the service rather than living
as module state, so a deployment with several workers can swap in a
shared counter (Redis, the database) that implements the same `hit`
method. The in-process version is advisory only: each process counts on
its own.
"""

import threading
import time
from typing import Callable, Dict, Protocol, Tuple


class RateLimiter(Protocol):
    def hit(self, key: str, limit: int) -> bool:
        """Count one request for `key`; False once `limit` is exceeded."""
        ...


class FixedWindowRateLimiter:
    """Counts hits per key in `window_seconds` buckets.

    The bucket is `floor(now / window_seconds)`. Counters from earlier
    buckets are dropped the first time a hit lands in a newer one.
    """

    def __init__(self, window_seconds: int = 60, clock: Callable[[], float] = time.time):
        self.window_seconds = window_seconds
        self.clock = clock
        self._window = -1
        self._counts: Dict[Tuple[int, str], int] = {}
        self._lock = threading.Lock()

    def hit(self, key: str, limit: int) -> bool:
        window = int(self.clock() // self.window_seconds)
        with self._lock:
            if window != self._window:
                self._evict_before(window)
                self._window = max(window, self._window)
            bucket = (window, key)
            count = self._counts.get(bucket, 0) + 1
            self._counts[bucket] = count
        return count <= limit

    def _evict_before(self, window: int) -> None:
        stale = [bucket for bucket in self._counts if bucket[0] < window]
        for bucket in stale:
            del self._counts[bucket]

    def __len__(self) -> int:
        return len(self._counts)
