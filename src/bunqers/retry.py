"""Fixed-interval resend loop for rate-limited requests."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

T = TypeVar("T")

DEFAULT_RATE_LIMIT_DELAY_SECONDS = 3.0

RATE_LIMITED_STATUS = 429


def should_retry_http_status(status: int) -> bool:
    return status == RATE_LIMITED_STATUS


class RetriesExhausted(Exception):
    def __init__(self, attempts: int, last_result: object):
        super().__init__(f"still retryable after {attempts} attempts")
        self.attempts = attempts
        self.last_result = last_result


async def retry_while_rate_limited(
    operation: Callable[[], Awaitable[T]],
    *,
    is_rate_limited: Callable[[T], bool],
    delay_seconds: float = DEFAULT_RATE_LIMIT_DELAY_SECONDS,
    max_retries: Optional[int] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_retry: Optional[Callable[[T, int], Awaitable[None]]] = None,
) -> T:
    """Await ``operation`` until ``is_rate_limited`` is false for its result.

    With ``max_retries=None`` the loop only ends through the caller's
    cancellation (``asyncio.timeout``, ``Task.cancel``); ``sleep`` is awaited
    between attempts so cancellation lands there.
    """
    if max_retries is not None and max_retries < 0:
        raise ValueError("max_retries must be >= 0")
    delay_seconds = max(0.0, delay_seconds)

    attempt = 0
    while True:
        attempt += 1
        result = await operation()
        if not is_rate_limited(result):
            return result
        if max_retries is not None and attempt > max_retries:
            raise RetriesExhausted(attempt, result)
        if on_retry is not None:
            await on_retry(result, attempt)
        await sleep(delay_seconds)
