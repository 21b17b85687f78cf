from __future__ import annotations

"""Per-user fixed window rate limiting for content fetches."""

import threading
import time
from dataclasses import dataclass, field
from typing import Callable

from bookmark_rag.rag.errors import RateLimitError


@dataclass
class _Window:
    count: int
    reset_at: float


@dataclass
class RateLimiter:
    """Fixed window limiter keyed by user id.

    State is process local. A window starts on a user's first request and is
    replaced lazily by the first request made after it expires. Expired
    windows of idle users are dropped every ``prune_interval`` checks.
    """
    max_requests: int = 10
    window_seconds: float = 60.0
    clock: Callable[[], float] = time.monotonic
    prune_interval: int = 256
    _windows: dict[str, _Window] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _checks: int = field(default=0, init=False, repr=False)

    def check(self, user_id: str) -> None:
        """Count one request for ``user_id`` or raise RateLimitError."""
        now = self.clock()
        with self._lock:
            self._checks += 1
            if self.prune_interval > 0 and self._checks % self.prune_interval == 0:
                self._prune_locked(now)
            window = self._windows.get(user_id)
            if window is None or window.reset_at <= now:
                self._windows[user_id] = _Window(count=1, reset_at=now + self.window_seconds)
                return
            if window.count >= self.max_requests:
                raise RateLimitError(
                    f"Rate limit exceeded. Max {self.max_requests} requests per "
                    f"{self.window_seconds:g} seconds.",
                    retry_after=window.reset_at - now,
                )
            window.count += 1

    def _prune_locked(self, now: float) -> int:
        expired = [user_id for user_id, window in self._windows.items() if window.reset_at <= now]
        for user_id in expired:
            del self._windows[user_id]
        return len(expired)

    def prune(self) -> int:
        """Drop expired windows and return how many were removed."""
        now = self.clock()
        with self._lock:
            return self._prune_locked(now)

    def tracked_users(self) -> int:
        with self._lock:
            return len(self._windows)

    def remaining(self, user_id: str) -> int:
        """Return how many requests the user may still make in the current window."""
        now = self.clock()
        with self._lock:
            window = self._windows.get(user_id)
            if window is None or window.reset_at <= now:
                return self.max_requests
            return max(0, self.max_requests - window.count)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
