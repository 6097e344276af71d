from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Dict, Optional
import threading
import time


@dataclass
class _Window:
    count: int
    first_request: float


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    remaining: int
    reset_at: float  # same clock as the limiter


class RateLimiter:
    """Fixed-window limiter keyed by client address.

    A window opens on the first request from a key and lasts
    ``window_seconds``; entries whose window has passed are evicted on every
    check so the table only holds active clients.
    """

    def __init__(self, max_requests: int = 5, window_seconds: float = 3600, clock: Callable[[], float] = time.time):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[str, _Window] = {}
        self._lock = threading.Lock()

    def _evict(self, now: float):
        expired = [key for key, w in self._windows.items() if now - w.first_request > self.window_seconds]
        for key in expired:
            del self._windows[key]

    def check(self, key: str, consume: bool = True) -> RateDecision:
        now = self._clock()
        with self._lock:
            self._evict(now)
            window = self._windows.get(key) or _Window(count=0, first_request=now)
            reset_at = window.first_request + self.window_seconds
            if window.count >= self.max_requests:
                return RateDecision(allowed=False, remaining=0, reset_at=reset_at)
            if consume:
                window.count += 1
                self._windows[key] = window
            return RateDecision(allowed=True, remaining=self.max_requests - window.count, reset_at=reset_at)

    def tracked(self) -> int:
        with self._lock:
            return len(self._windows)


def client_address(forwarded_for: Optional[str], real_ip: Optional[str]) -> str:
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    return real_ip or "unknown"
