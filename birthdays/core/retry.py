"""Retry utilities for resilient operations.

Fixed-delay retry for async operations. The delay does not grow between
attempts, and the attempt count is always bounded.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from birthdays.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    delay_seconds: float = 1.0
    retryable_exceptions: tuple[type[Exception], ...] = field(default_factory=lambda: (Exception,))

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must not be negative")


async def retry_with_fixed_delay(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    operation_name: str = "operation",
    on_attempt: Callable[[int], None] | None = None,
) -> T:
    """
    Execute async function, retrying with a constant delay between attempts.

    A success at any attempt returns immediately. After ``max_attempts``
    failures the last exception is re-raised; no delay follows the final
    attempt.

    Args:
        fn: Async function to execute (no arguments)
        config: Retry configuration, uses defaults if not provided
        operation_name: Name for logging purposes
        on_attempt: Called with the 1-based attempt number before each attempt

    Returns:
        Result of fn()

    Raises:
        Exception: The last exception if all retries are exhausted

    Example:
        ```python
        config = RetryConfig(max_attempts=3, retryable_exceptions=(DeliveryError,))
        result = await retry_with_fixed_delay(
            lambda: send(message),
            config=config,
            operation_name=f"deliver:{message.message_id}",
        )
        ```
    """
    config = config or RetryConfig()

    for attempt in range(1, config.max_attempts + 1):
        if on_attempt is not None:
            on_attempt(attempt)
        try:
            return await fn()
        except config.retryable_exceptions as e:
            if attempt == config.max_attempts:
                logger.bind(
                    operation=operation_name,
                    attempts=config.max_attempts,
                    error=str(e),
                ).warning("retry_exhausted")
                raise

            logger.bind(
                operation=operation_name,
                attempt=attempt,
                max_attempts=config.max_attempts,
                delay_seconds=config.delay_seconds,
                error=str(e),
            ).info("retry_attempt")
            await asyncio.sleep(config.delay_seconds)

    raise RuntimeError("Unexpected state in retry_with_fixed_delay")
