"""
Exponential backoff for transient failures.

Only errors flagged 'retryable' are retried ('TransientError' and wrappers that
inherit the flag from their cause); validation and integrity errors propagate
on the first attempt. When the failure carries a 'retry_after' hint the wait
is at least that long.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from loguru import logger

from messaging_toolkit.errors import MessagingError

T = TypeVar("T")


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 30.0,
) -> T:
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except MessagingError as exc:
            if not exc.retryable or attempt == attempts:
                raise
            delay = min(base_delay * 2 ** (attempt - 1), max_delay)
            retry_after = getattr(exc, "retry_after", None)
            if retry_after:
                delay = max(delay, retry_after)
            logger.warning(f"Transient failure ({exc}), retry {attempt}/{attempts - 1} in {delay:.2f}s")
            await asyncio.sleep(delay)

    raise AssertionError("unreachable")
