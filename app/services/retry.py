"""Bounded retry loop shared by the notification transports"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    label: str,
    backoff: Sequence[float] = (1.0, 1.0),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run ``operation`` once plus one retry per ``backoff`` entry.

    Each retry waits the matching backoff delay (seconds). The last error is
    re-raised once every attempt has failed.
    """
    max_attempts = len(backoff) + 1
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as e:
            if attempt >= max_attempts:
                logger.error(f"❌ {label} failed after {attempt} attempts: {e}")
                raise
            delay = backoff[attempt - 1]
            logger.warning(
                f"⚠️ {label} attempt {attempt}/{max_attempts} failed: {e} - retrying in {delay}s"
            )
            await sleep(delay)
