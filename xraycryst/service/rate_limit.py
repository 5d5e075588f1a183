"""
Rate limiting for the XrayCryst service.

Sliding window limits tracked per caller, one limiter per endpoint family.
"""

import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Callable, Dict, Optional


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""
    allowed: bool
    remaining: int
    reset_at: float
    retry_after: Optional[float] = None


class RateLimiter:
    """
    Sliding window rate limiter.

    Thread-safe; each key keeps a deque of hit timestamps inside the window.
    """

    def __init__(self, rpm: int, window_seconds: int = 60, clock: Callable[[], float] = time.time):
        """
        Args:
            rpm: Maximum requests per window
            window_seconds: Window size in seconds (default 60)
            clock: Time source, injectable for tests
        """
        self._limit = max(1, rpm)
        self._window = window_seconds
        self._clock = clock
        self._hits: Dict[str, deque] = defaultdict(deque)
        self._lock = threading.RLock()
        self._last_cleanup = clock()

    def allow(self, key: str) -> bool:
        return self.check(key).allowed

    def check(self, key: str) -> RateLimitResult:
        """
        Record a hit for key if it fits in the window.

        Returns:
            RateLimitResult; retry_after is set when the hit was refused
        """
        now = self._clock()
        window_start = now - self._window

        with self._lock:
            if now - self._last_cleanup >= self._window:
                self.cleanup_expired()

            q = self._hits[key]
            while q and q[0] < window_start:
                q.popleft()

            current_count = len(q)
            reset_at = (q[0] + self._window) if q else (now + self._window)

            if current_count >= self._limit:
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_at=reset_at,
                    retry_after=max(0, q[0] + self._window - now)
                )

            q.append(now)
            return RateLimitResult(
                allowed=True,
                remaining=self._limit - current_count - 1,
                reset_at=reset_at
            )

    def reset(self, key: Optional[str] = None) -> None:
        """Reset one key, or every key when key is None."""
        with self._lock:
            if key:
                self._hits.pop(key, None)
            else:
                self._hits.clear()

    def cleanup_expired(self) -> int:
        """
        Remove expired entries and drop keys left with none.

        check() runs this at most once per window.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        window_start = now - self._window
        removed = 0

        with self._lock:
            empty_keys = []

            for key, q in self._hits.items():
                while q and q[0] < window_start:
                    q.popleft()
                    removed += 1

                if not q:
                    empty_keys.append(key)

            for key in empty_keys:
                del self._hits[key]

            self._last_cleanup = now

        return removed

    def tracked_keys(self) -> int:
        """Number of callers currently holding window state."""
        with self._lock:
            return len(self._hits)
