from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from ..errors import RateLimited

logger = logging.getLogger(__name__)

T = TypeVar("T")
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """
    Backoff for rate-limited provider calls.

    A wait given by the provider (Retry-After) is used as-is, capped at
    `max_wait_s`; otherwise the wait is `base_delay_s * 2 ** attempt`.
    """

    max_retries: int = 3
    base_delay_s: float = 1.0
    max_wait_s: float = 60.0

    def delay_for(self, attempt: int, error: RateLimited) -> float:
        if error.retry_after_s is not None:
            return min(float(error.retry_after_s), self.max_wait_s)
        return min(self.base_delay_s * (2**attempt), self.max_wait_s)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    sleep: Sleep = asyncio.sleep,
) -> T:
    attempt = 0
    while True:
        try:
            return await operation()
        except RateLimited as exc:
            attempt += 1
            if attempt > policy.max_retries:
                logger.warning("Rate limit retries exhausted after %d attempts", attempt)
                raise
            delay = policy.delay_for(attempt, exc)
            logger.info(
                "Rate limited, retry %d/%d in %.1fs",
                attempt,
                policy.max_retries,
                delay,
            )
            await sleep(delay)
