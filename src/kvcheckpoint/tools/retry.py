"""Bounded retry logic with exponential backoff for backend calls."""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ..backends.base import KeyValueBackend
from ..errors import BackendUnavailable, WriteContention

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryManager:
    """
    Retry manager with configurable retry logic.

    PATTERN: Manager class for retry handling
    CRITICAL: Only idempotent calls may be routed through it
    GOTCHA: Backoff delay is capped at max_delay
    """

    def __init__(
        self,
        max_retries: int = 3,
        backoff_base: float = 0.05,
        backoff_factor: float = 2.0,
        max_delay: float = 2.0,
    ):
        """
        Initialize retry manager.

        Args:
            max_retries: Maximum number of attempts
            backoff_base: Delay after the first failed attempt (seconds)
            backoff_factor: Exponential backoff multiplier
            max_delay: Maximum delay between retries (seconds)
        """
        if max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {max_retries}")
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_factor = backoff_factor
        self.max_delay = max_delay
        self.logger = logging.getLogger(__name__)

    async def execute_with_retry(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        retry_on: tuple = (BackendUnavailable,),
        **kwargs: Any,
    ) -> T:
        """
        Execute function with retry logic.

        Args:
            func: Async function to execute
            *args: Positional arguments
            retry_on: Tuple of exception types to retry on
            **kwargs: Keyword arguments

        Returns:
            Function result

        Raises:
            Exception: The last error if all attempts fail
        """
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries):
            try:
                return await func(*args, **kwargs)

            except retry_on as e:
                last_error = e

                if attempt < self.max_retries - 1:
                    delay = self.calculate_delay(attempt)

                    self.logger.warning(
                        f"Attempt {attempt + 1}/{self.max_retries} of "
                        f"{getattr(func, '__name__', func)} failed: {e}. "
                        f"Retrying in {delay:.2f}s..."
                    )

                    await asyncio.sleep(delay)
                    continue

        # All retries exhausted
        if last_error:
            self.logger.error(f"All {self.max_retries} attempts failed: {last_error}")
            raise last_error

        raise RuntimeError(
            f"Unexpected error in retry logic for {getattr(func, '__name__', func)}"
        )

    def calculate_delay(self, attempt: int) -> float:
        """
        Calculate retry delay for given attempt.

        Args:
            attempt: Attempt number (0-indexed)

        Returns:
            Delay in seconds
        """
        return min(self.backoff_base * self.backoff_factor**attempt, self.max_delay)


async def compare_and_swap_loop(
    backend: KeyValueBackend,
    key: str,
    mutate: Callable[[Optional[bytes]], bytes],
    retry: RetryManager,
    ttl: Optional[int] = None,
) -> bytes:
    """
    Optimistic read-modify-write of one key.

    PATTERN: gets -> mutate -> compare_and_swap, backing off between losses
    CRITICAL: Bounded by retry.max_retries; never retries forever

    Args:
        backend: Backend declaring supports_cas
        key: Key to update
        mutate: Pure function from the current value (None if absent) to the new one
        retry: Supplies the attempt budget and backoff curve
        ttl: Expiry for the stored value

    Returns:
        The value that was stored

    Raises:
        WriteContention: If every attempt lost the race
    """
    for attempt in range(retry.max_retries):
        current, token = await backend.gets(key)
        updated = mutate(current)
        if await backend.compare_and_swap(key, token, updated, ttl=ttl):
            if attempt:
                logger.debug(f"CAS on {key} succeeded after {attempt + 1} attempts")
            return updated

        if attempt < retry.max_retries - 1:
            # Jitter keeps contending writers from retrying in lockstep.
            await asyncio.sleep(retry.calculate_delay(attempt) * random.uniform(0.5, 1.5))

    logger.warning(f"CAS on {key} exhausted {retry.max_retries} attempts")
    raise WriteContention(key, retry.max_retries)
