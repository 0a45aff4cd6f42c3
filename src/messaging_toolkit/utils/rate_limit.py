"""
Fixed-window rate limiting per (user, action).

Each key gets a counter and a reset time. The first call in a window opens it;
calls beyond 'limit' inside the window are rejected with 'RateLimited' carrying
the seconds left until the window resets. The limiter never sleeps: retry
timing is the caller's decision.
"""

import asyncio
import math
import time
from collections.abc import Callable

from loguru import logger
from pydantic import BaseModel

from messaging_toolkit.errors import RateLimited


class RateLimitWindow(BaseModel):
    count: int
    reset_time: float


class RateLimiter:
    """
    In-process fixed-window limiter.

    Attributes:
        limits: Maximum calls per window keyed by action name. Actions without
            an entry are not limited.
        window_seconds: Length of one window.
    """

    def __init__(
        self,
        limits: dict[str, int],
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limits = limits
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[tuple[str, str], RateLimitWindow] = {}
        self._lock = asyncio.Lock()

    async def check(self, user_id: str, action: str) -> None:
        """Consume one unit of quota or raise 'RateLimited'."""
        limit = self.limits.get(action)
        if limit is None or limit <= 0:
            return

        async with self._lock:
            now = self._clock()
            key = (user_id, action)
            window = self._windows.get(key)

            if window is None or now >= window.reset_time:
                self._windows[key] = RateLimitWindow(count=1, reset_time=now + self.window_seconds)
                return

            if window.count >= limit:
                retry_after = math.ceil(window.reset_time - now)
                logger.debug(f"Rate limit hit for user={user_id} action={action}, retry after {retry_after}s")
                raise RateLimited(retry_after=retry_after, action=action)

            window.count += 1
