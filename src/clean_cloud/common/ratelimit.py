"""Request rate limiting for machine-to-machine endpoints.

The limiter is injected rather than held at module level so a shared store
can replace the in-process default. The in-memory implementation is
per-process: behind N instances the effective limit is ``limit * N``.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


@dataclass
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: int = 0

    def __bool__(self) -> bool:
        return self.allowed


class RateLimiter(Protocol):
    def allow(self, key: str) -> RateLimitDecision:
        ...


@dataclass
class _Window:
    count: int
    reset_at: float


class InMemoryRateLimiter:
    """Fixed-window counter keyed by caller credential.

    A window opens on the first request for a key and lasts ``window_seconds``.
    Requests after the limit keep counting until the window expires.
    """

    def __init__(
        self,
        limit: int = 5,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()

    def allow(self, key: str) -> RateLimitDecision:
        now = self._clock()
        with self._lock:
            self._evict_expired(now)
            window = self._windows.get(key)
            if window is None or now > window.reset_at:
                self._windows[key] = _Window(count=1, reset_at=now + self.window_seconds)
                return RateLimitDecision(allowed=True, remaining=self.limit - 1)

            window.count += 1
            if window.count > self.limit:
                retry_after = max(1, math.ceil(window.reset_at - now))
                logger.warning(
                    "Rate limit exceeded",
                    extra={"count": window.count, "limit": self.limit},
                )
                return RateLimitDecision(allowed=False, remaining=0, retry_after=retry_after)
            return RateLimitDecision(allowed=True, remaining=self.limit - window.count)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def _evict_expired(self, now: float) -> None:
        # Bounded sweep so the map cannot grow without limit on unique keys.
        if len(self._windows) < 1024:
            return
        expired = [k for k, w in self._windows.items() if now > w.reset_at]
        for k in expired:
            del self._windows[k]
