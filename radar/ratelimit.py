"""Fixed-window request limiter keyed by client address."""
from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Callable

log = logging.getLogger(__name__)


@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    """Allow at most *max_requests* per key in each *window_seconds* window.

    State lives in process memory, so each worker process counts separately.
    Expired windows are dropped lazily: :meth:`check` sweeps them once per
    window, so an idle key is forgotten within two windows.
    """

    def __init__(
        self,
        window_seconds: float | None = None,
        max_requests: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window_seconds = window_seconds or float(os.environ.get("RADAR_RATE_LIMIT_WINDOW", "10"))
        self.max_requests = max_requests or int(os.environ.get("RADAR_RATE_LIMIT_MAX", "20"))
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: dict[str, _Window] = {}
        self._next_sweep = clock() + self.window_seconds

    def check(self, key: str) -> bool:
        """Count one request for *key*; ``False`` once the window is used up."""
        with self._lock:
            now = self._clock()
            if now >= self._next_sweep:
                self._drop_expired(now)
                self._next_sweep = now + self.window_seconds
            window = self._windows.get(key)
            if window is None or now >= window.reset_at:
                self._windows[key] = _Window(count=1, reset_at=now + self.window_seconds)
                return True
            if window.count >= self.max_requests:
                log.debug("Rate limit hit for %s", key)
                return False
            window.count += 1
            return True

    def prune(self) -> int:
        """Forget expired windows; returns how many were removed."""
        with self._lock:
            return self._drop_expired(self._clock())

    def _drop_expired(self, now: float) -> int:
        expired = [k for k, w in self._windows.items() if now >= w.reset_at]
        for k in expired:
            del self._windows[k]
        return len(expired)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def __len__(self) -> int:
        return len(self._windows)


def client_key(forwarded_for: str | None, real_ip: str | None, host: str | None = None) -> str:
    """Identify the caller: first X-Forwarded-For hop, else X-Real-IP, else the peer."""
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    return real_ip or host or "unknown"
