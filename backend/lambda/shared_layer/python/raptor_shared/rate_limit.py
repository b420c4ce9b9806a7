"""raptor_shared.rate_limit — Best-effort fixed-window throttle for public login endpoints.

State lives in the warm Lambda container and resets on cold start.
"""
from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional

__all__ = ["RateLimitDecision", "RateLimiter"]


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: int = 0


@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    """Counts attempts per key inside a fixed time window."""

    def __init__(self, max_attempts: int, window_seconds: float, max_tracked: int = 1000) -> None:
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.max_tracked = max_tracked
        self._windows: Dict[str, _Window] = {}
        self._lock = threading.Lock()

    def check(self, key: str, now: Optional[float] = None) -> RateLimitDecision:
        now = time.time() if now is None else now
        with self._lock:
            if len(self._windows) > self.max_tracked:
                self._collect(now)

            window = self._windows.get(key)
            if window is None or now > window.reset_at:
                self._windows[key] = _Window(count=1, reset_at=now + self.window_seconds)
                return RateLimitDecision(allowed=True, remaining=self.max_attempts - 1)

            window.count += 1
            if window.count > self.max_attempts:
                retry_after = max(1, math.ceil(window.reset_at - now))
                return RateLimitDecision(allowed=False, remaining=0, retry_after=retry_after)
            return RateLimitDecision(allowed=True, remaining=self.max_attempts - window.count)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def _collect(self, now: float) -> None:
        expired = [k for k, w in self._windows.items() if now > w.reset_at]
        for k in expired:
            del self._windows[k]
