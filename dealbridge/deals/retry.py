"""Retry with exponential backoff for transient pipeline failures."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from dealbridge.core.errors import DealBridgeError
from dealbridge.core.events import PIPELINE_RETRIES_TOTAL
from dealbridge.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def is_retryable(exc: BaseException) -> bool:
    """Whether a failure is worth another attempt."""
    return isinstance(exc, DealBridgeError) and exc.retryable


@dataclass
class RetryPolicy:
    """Bounded exponential backoff.

    Args:
        max_attempts: Total attempts including the first one
        base_delay: Delay before the first retry in seconds
        max_delay: Upper bound for any single delay
        backoff_factor: Multiplier applied per attempt
        retry_on: Predicate deciding whether an exception is retried
    """

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 5.0
    backoff_factor: float = 2.0
    retry_on: Callable[[BaseException], bool] = is_retryable
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (zero-based) failed attempt."""
        return min(self.base_delay * (self.backoff_factor**attempt), self.max_delay)

    async def call(
        self,
        operation: Callable[[], Awaitable[T]],
        stage: str,
        retry_on: Callable[[BaseException], bool] | None = None,
    ) -> T:
        """Run ``operation`` until it succeeds or retries are exhausted.

        The last exception is re-raised unchanged.
        """
        should_retry = retry_on or self.retry_on
        for attempt in range(self.max_attempts):
            try:
                return await operation()
            except Exception as e:
                if not should_retry(e) or attempt == self.max_attempts - 1:
                    raise

                delay = self.delay_for(attempt)
                PIPELINE_RETRIES_TOTAL.labels(stage=stage).inc()
                logger.warning(
                    "pipeline_stage_retry",
                    stage=stage,
                    attempt=attempt + 1,
                    max_attempts=self.max_attempts,
                    delay=round(delay, 3),
                    error_type=type(e).__name__,
                    error=str(e),
                )
                await self.sleep(delay)

        # This should never be reached
        raise RuntimeError("Unexpected retry loop exit")
