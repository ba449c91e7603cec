"""
Per-user fixed-window rate limiting for externally costly tool calls.

One ``RateLimiter`` is shared by every rate-gated tool, so a user has a
single budget for web search and URL fetching combined.  State lives in
memory only and is lost on restart.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable


@dataclass
class _Window:
    start: float
    count: int = 0


class RateLimiter:
    """
    Parameters
    ----------
    max_requests:
        Calls permitted per user within one window.
    window_seconds:
        Window length.
    clock:
        Monotonic time source; injectable for tests.
    """

    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}

    def allow(self, user_id: str) -> bool:
        now = self._clock()
        window = self._windows.get(user_id)
        if window is None or now > window.start + self.window_seconds:
            window = _Window(start=now)
            self._windows[user_id] = window

        if window.count >= self.max_requests:
            return False

        window.count += 1
        return True

    def remaining(self, user_id: str) -> int:
        window = self._windows.get(user_id)
        if window is None or self._clock() > window.start + self.window_seconds:
            return self.max_requests
        return max(0, self.max_requests - window.count)
