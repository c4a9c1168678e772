"""InsightStream: Retry Policy.

The single place that decides whether a failure is retried or surfaced.
A retry re-runs the failed operation from scratch, including a fresh HTTP
call. By default there is no attempt cap and no delay, so a persistently
transient failure keeps being retried; ``retry_limit`` and ``retry_delay``
bound that when set.
"""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from insightstream.config import settings
from insightstream.core.errors import is_retryable
from insightstream.core.logging import get_logger

logger = get_logger("stream.retry")

T = TypeVar("T")


class RetryPolicy:
    """Retry ``RetryableError`` failures; re-raise everything else."""

    def __init__(
        self,
        limit: Optional[int] = None,
        delay: Optional[float] = None,
    ):
        self.limit = limit if limit is not None else settings.retry_limit
        self.delay = delay if delay is not None else settings.retry_delay

    def _exhausted(self, attempts: int) -> bool:
        return self.limit is not None and attempts >= self.limit

    async def handle(self, error: Exception, retry: Callable[[], Awaitable[T]]) -> T:
        """Re-run ``retry`` while it fails retryably, else raise the error."""
        attempts = 0
        while is_retryable(error) and not self._exhausted(attempts):
            attempts += 1
            logger.warning(
                f"Retrying after error: {error} (attempt {attempts})",
                extra={"attempt": attempts},
            )
            if self.delay:
                await asyncio.sleep(self.delay)
            try:
                return await retry()
            except Exception as e:
                error = e
        raise error

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation``, routing any failure through ``handle``."""
        try:
            return await operation()
        except Exception as e:
            return await self.handle(e, operation)
