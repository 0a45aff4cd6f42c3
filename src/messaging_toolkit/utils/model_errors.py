"""Translation of OpenAI client exceptions into the toolkit's error families."""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

import openai

from messaging_toolkit.errors import MessagingError, ModelTimeout, ModelUnavailable, RateLimited

T = TypeVar("T")

DEFAULT_RETRY_AFTER_SECONDS = 60.0


def map_openai_error(error: openai.OpenAIError, fallback: type[MessagingError]) -> MessagingError:
    if isinstance(error, openai.APITimeoutError):
        return ModelTimeout(f"Model call timed out: {error}")
    if isinstance(error, openai.RateLimitError):
        return RateLimited(retry_after=_retry_after(error))
    if isinstance(error, (openai.APIConnectionError, openai.InternalServerError)):
        return ModelUnavailable(f"Model endpoint unavailable: {error}")
    return fallback(f"Model call failed: {error}")


def _retry_after(error: openai.RateLimitError) -> float:
    header = error.response.headers.get("retry-after")
    try:
        return float(header) if header is not None else DEFAULT_RETRY_AFTER_SECONDS
    except ValueError:
        return DEFAULT_RETRY_AFTER_SECONDS


async def call_with_timeout(call: Awaitable[T], timeout_seconds: float, what: str = "Model call") -> T:
    """Await 'call' for at most 'timeout_seconds'. A timeout surfaces as the retryable 'ModelTimeout'."""
    try:
        return await asyncio.wait_for(call, timeout=timeout_seconds)
    except asyncio.TimeoutError as e:
        raise ModelTimeout(f"{what} exceeded {timeout_seconds}s") from e
