"""Caller-supplied deadlines for store operations."""

import asyncio
import time
from typing import Awaitable, Optional, TypeVar

from ..errors import DeadlineExceeded

T = TypeVar("T")


class Deadline:
    """
    Absolute deadline shared by every backend call of one operation.

    PATTERN: asyncio.wait_for with the remaining budget
    GOTCHA: A None timeout means no deadline at all
    """

    def __init__(self, operation: str, timeout: Optional[float] = None):
        self.operation = operation
        self.timeout = timeout
        self._expires_at = (
            time.monotonic() + timeout if timeout is not None else None
        )

    def remaining(self) -> Optional[float]:
        """Seconds left, or None without a deadline."""
        if self._expires_at is None:
            return None
        return max(self._expires_at - time.monotonic(), 0.0)

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        Await within the remaining budget.

        Raises:
            DeadlineExceeded: If the budget runs out first
        """
        remaining = self.remaining()
        if remaining is None:
            return await awaitable
        if remaining <= 0:
            # Close the coroutine so it is never left un-awaited.
            close = getattr(awaitable, "close", None)
            if close is not None:
                close()
            raise DeadlineExceeded(self.operation, self.timeout)
        try:
            return await asyncio.wait_for(awaitable, timeout=remaining)
        except asyncio.TimeoutError as e:
            raise DeadlineExceeded(self.operation, self.timeout) from e
