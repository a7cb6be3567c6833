# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Retry with exponential backoff for transient store failures.

Only errors flagged retryable are retried. Precondition failures
(ConcurrentUpdateError) surface to the caller immediately.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from .exceptions import StoreUnavailableError

logger = logging.getLogger("archon.retry")

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Exponential backoff settings"""

    max_retries: int = 3
    delay_ms: int = 200
    backoff: float = 2.0
    max_delay_ms: int = 5000
    retry_on: Tuple[Type[BaseException], ...] = field(
        default=(StoreUnavailableError,)
    )

    def delay_for(self, attempt: int) -> float:
        """Delay in seconds before retry number ``attempt + 1``"""
        delay_ms = min(self.delay_ms * (self.backoff**attempt), self.max_delay_ms)
        return delay_ms / 1000

    async def run(
        self, operation: Callable[[], Awaitable[T]], description: str = "operation"
    ) -> T:
        """
        Await ``operation()`` until it succeeds or retries run out.

        Raises:
            The last error once ``max_retries`` retries have failed
        """
        for attempt in range(self.max_retries + 1):
            try:
                return await operation()
            except self.retry_on as e:
                if attempt >= self.max_retries:
                    logger.error(f"{description} failed after {attempt + 1} attempts: {e}")
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    f"{description} failed - Retry {attempt + 1}/{self.max_retries} "
                    f"after {delay:.2f}s: {e}"
                )
                await asyncio.sleep(delay)

        raise RuntimeError("unreachable")

    @classmethod
    def from_config(cls, store_config) -> "RetryPolicy":
        return cls(
            max_retries=store_config.max_retries,
            delay_ms=store_config.retry_delay_ms,
            backoff=store_config.retry_backoff,
            max_delay_ms=store_config.retry_max_delay_ms,
        )
