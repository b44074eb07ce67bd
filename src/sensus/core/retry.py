"""Generic retrying call driven by a RetryPolicy."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from sensus.core.config import RetryPolicy

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


async def call_with_retry(
    func: Callable[[int], Awaitable[T]],
    policy: RetryPolicy,
    is_retryable: Callable[[BaseException], bool],
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Await ``func(attempt)`` until it succeeds or the policy gives up.

    Only errors accepted by ``is_retryable`` are retried; anything else is
    raised immediately. After the last allowed attempt the final error is
    re-raised. Sleeping happens between attempts, never while holding a lock.
    """

    delays = policy.delays()
    attempt = 0
    while True:
        try:
            return await func(attempt)
        except Exception as exc:
            if not is_retryable(exc) or attempt >= len(delays):
                raise
            delay = delays[attempt]
            LOGGER.warning(
                "Attempt %s failed (%s); retrying in %.1fs", attempt + 1, exc, delay
            )
            await sleep(delay)
            attempt += 1
