"""Bounded exponential backoff with jitter, and a result-based retry loop."""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from imagegate.consts import RETRY_BASE_DELAY, RETRY_JITTER_FACTOR, RETRY_MAX_DELAY

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Backoff:
    """Exponential backoff with jitter."""

    def __init__(
        self,
        initial_delay: float = RETRY_BASE_DELAY,
        max_delay: float = RETRY_MAX_DELAY,
        backoff_factor: float = 2.0,
        jitter_factor: float = RETRY_JITTER_FACTOR,
    ):
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.jitter_factor = jitter_factor

    def delay_for(self, retry_index: int) -> float:
        """Delay before retry number ``retry_index`` (0-based), jitter applied."""
        delay = min(self.initial_delay * (self.backoff_factor**retry_index), self.max_delay)
        # Add jitter: +/- jitter_factor of the delay
        jitter = delay * self.jitter_factor * (2 * random.random() - 1)
        return max(0.0, delay + jitter)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    should_retry: Callable[[T], bool],
    max_retries: int,
    backoff: Backoff | None = None,
    label: str = "operation",
) -> tuple[T, int]:
    """Run ``operation`` until it succeeds or the retry bound is reached.

    Args:
        operation: Async callable producing a result
        should_retry: Returns True when the result is a transient failure
        max_retries: Maximum number of retries after the first attempt
        backoff: Backoff policy (default: Backoff())
        label: Name used in log messages

    Returns:
        Tuple of (last result, attempts made)
    """
    backoff = backoff or Backoff()
    attempt = 0

    while True:
        result = await operation()
        attempt += 1

        if not should_retry(result):
            return result, attempt

        if attempt > max_retries:
            logger.warning(f"Max retries ({max_retries}) reached for {label}")
            return result, attempt

        delay = backoff.delay_for(attempt - 1)
        logger.info(f"Retry {attempt}/{max_retries} for {label} after {delay:.1f}s")
        await asyncio.sleep(delay)
