"""
Bounded retry for transport operations.

Only errors listed in ``retryable_exceptions`` are retried, and never an
error flagged ``non_retryable`` (a missing secret, a missing ssh client, a
cancelled run). The attempt bound is hard: ``max_attempts`` calls, then
RetryExhausted.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from deployer.shared.domain.exceptions import TransportError
from deployer.shared.infrastructure.config import settings
from deployer.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_exceptions: tuple = (Exception,)

    @classmethod
    def for_transport(cls) -> "RetryConfig":
        """Connection-level retries as configured by DEPLOY_TRANSPORT_* settings."""
        return cls(
            max_attempts=settings.transport_max_attempts,
            initial_delay=settings.transport_retry_delay,
            retryable_exceptions=(TransportError,),
        )

    def is_retryable(self, error: BaseException) -> bool:
        if not isinstance(error, self.retryable_exceptions):
            return False
        return not getattr(error, "non_retryable", False)

    def delay_for(self, attempt: int) -> float:
        """Backoff before attempt ``attempt + 1``."""
        delay = min(self.initial_delay * (self.exponential_base ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay *= 0.5 + random.random()
        return delay


class RetryExhausted(Exception):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, operation: str, attempts: int, last_error: BaseException):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Operation '{operation}' failed after {attempts} attempts: {last_error}")


async def with_retry_async(
    coro_factory: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    operation_name: str = "operation",
    **log_context: Any,
) -> T:
    """
    Await ``coro_factory()`` until it succeeds or the attempt bound is hit.

    Non-retryable errors propagate unchanged on the first occurrence.

    Raises:
        RetryExhausted: After ``config.max_attempts`` retryable failures
    """
    config = config or RetryConfig()

    attempt = 0
    while True:
        attempt += 1
        try:
            return await coro_factory()
        except Exception as e:
            if not config.is_retryable(e):
                raise
            if attempt >= config.max_attempts:
                logger.error("retry_exhausted", operation=operation_name, attempt=attempt, error=str(e), **log_context)
                raise RetryExhausted(operation_name, attempt, e) from e

            delay = config.delay_for(attempt)
            logger.warning(
                "retry_attempt",
                operation=operation_name,
                attempt=attempt,
                max_attempts=config.max_attempts,
                delay=f"{delay:.2f}s",
                error=str(e),
                **log_context,
            )
            await asyncio.sleep(delay)
