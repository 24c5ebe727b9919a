"""Retry logic shared by provider connectors and revocation services."""

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from saasguard.core.exceptions import ConnectionError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior.

    ``max_attempts`` counts the first call, so a config with
    ``max_attempts=4`` allows three retries.
    """

    max_attempts: int = 4
    initial_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = False


# Provider data calls: 3 retries, 1s base delay
CONNECTOR_RETRY = RetryConfig(max_attempts=4, initial_delay=1.0)

# Token revocation endpoints: 2 retries, 0.5s base delay
REVOCATION_RETRY = RetryConfig(max_attempts=3, initial_delay=0.5)


def is_retryable_error(error: BaseException) -> bool:
    """Check if an error should trigger a retry.

    Only transport-level failures (timeouts, 5xx, 429) are retried.
    Authentication and validation failures are surfaced immediately.

    Args:
        error: Exception raised by the wrapped call

    Returns:
        True if error should be retried
    """
    return isinstance(error, ConnectionError)


def calculate_backoff_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate exponential backoff delay.

    Args:
        attempt: Current attempt number (0-indexed)
        config: Retry configuration

    Returns:
        Delay in seconds
    """
    delay = min(
        config.initial_delay * (config.exponential_base ** attempt),
        config.max_delay,
    )

    # Add jitter to prevent thundering herd
    if config.jitter:
        delay = delay * (0.5 + random.random() * 0.5)

    return delay


async def retry_async(
    func: Callable[[], Awaitable[T]],
    config: Optional[RetryConfig] = None,
    is_retryable: Callable[[BaseException], bool] = is_retryable_error,
    operation: str = "",
) -> T:
    """Await ``func`` until it succeeds or the retry budget is spent.

    Args:
        func: Zero-argument coroutine function to call
        config: Retry configuration
        is_retryable: Predicate deciding whether an error is retried
        operation: Name used in log events

    Returns:
        Result of the first successful call

    Raises:
        The last error raised by ``func``
    """
    if config is None:
        config = RetryConfig()

    attempt = 0
    while True:
        try:
            return await func()
        except Exception as e:
            if not is_retryable(e):
                raise

            if attempt >= config.max_attempts - 1:
                logger.error(
                    "max_retries_exhausted",
                    operation=operation,
                    max_attempts=config.max_attempts,
                    error=str(e),
                )
                raise

            delay = calculate_backoff_delay(attempt, config)
            logger.warning(
                "retryable_error",
                operation=operation,
                attempt=attempt + 1,
                max_attempts=config.max_attempts,
                error=str(e),
                delay=delay,
            )
            await asyncio.sleep(delay)
            attempt += 1
