"""Async retry helpers with exponential backoff plus random jitter."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

OnFail = Callable[[Exception, int], None]


def jitter(base: float = 0.1) -> float:
    return random.uniform(0.0, base)


def exponential_backoff(base: float = 0.1) -> Callable[[int], float]:
    def delay(attempt: int) -> float:
        return (2**attempt) * base + jitter(base)

    return delay


async def retry(
    fn: Callable[[], Awaitable[T]],
    backoff: Callable[[int], float],
    on_fail: Optional[OnFail] = None,
    max_attempts: int = 5,
) -> T:
    """Await ``fn`` up to ``max_attempts`` times; the last error propagates."""
    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn()
        except Exception as exc:  # noqa: BLE001
            if on_fail is not None:
                on_fail(exc, attempt)
            if attempt >= max_attempts:
                raise
            await asyncio.sleep(backoff(attempt))


async def retry_with_exponential_backoff(
    fn: Callable[[], Awaitable[T]],
    on_fail: Optional[OnFail] = None,
    max_attempts: int = 5,
    base_delay: float = 0.1,
) -> T:
    return await retry(fn, exponential_backoff(base_delay), on_fail, max_attempts)

