"""Fixed-window request rate limiting, keyed by client."""

import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of one rate-limit check."""

    allowed: bool
    remaining: int
    retry_after_seconds: int = 0


class RateLimiter:
    """In-memory fixed-window limiter.

    Each client gets `limit` requests per window; the window starts at the
    client's first request. Expired windows are pruned on access.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, tuple[float, int]] = {}
        self._lock = threading.Lock()

    def check(self, client_key: str) -> RateLimitDecision:
        """Count a request and decide whether it may proceed."""
        now = self._clock()
        with self._lock:
            self._prune(now)
            started, count = self._windows.get(client_key, (now, 0))
            if count >= self.limit:
                retry_after = math.ceil(started + self.window_seconds - now)
                return RateLimitDecision(
                    allowed=False, remaining=0, retry_after_seconds=max(1, retry_after)
                )
            self._windows[client_key] = (started, count + 1)
            return RateLimitDecision(allowed=True, remaining=self.limit - count - 1)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def _prune(self, now: float) -> None:
        expired = [
            key
            for key, (started, _) in self._windows.items()
            if now - started >= self.window_seconds
        ]
        for key in expired:
            del self._windows[key]
