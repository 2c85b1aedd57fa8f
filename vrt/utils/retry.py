"""Bounded retry with a fixed delay between attempts."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int,
    delay: float,
    label: str = "operation",
    retry_on: tuple[type[BaseException], ...] = (Exception,),
) -> T:
    """Run ``operation`` up to ``max_attempts`` times.

    Sleeps ``delay`` seconds between attempts. The exception from the last
    attempt is re-raised unchanged; exceptions not listed in ``retry_on``
    propagate immediately.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except retry_on as e:
            if attempt == max_attempts:
                logger.warning("%s failed after %d attempts: %s", label, attempt, e)
                raise
            logger.info("Attempt %d/%d of %s failed (%s), retrying in %.1fs",
                        attempt, max_attempts, label, e, delay)
            await asyncio.sleep(delay)

    raise AssertionError("unreachable")
