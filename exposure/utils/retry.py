"""Timeout and retry wrapper for calls to external collaborators."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from .errors import DependencyError, ExposureError, is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """
    Bounded retry policy with exponential backoff.

    Attributes:
        timeout: Per-attempt timeout in seconds
        max_retries: Maximum number of attempts
        backoff_base: First backoff delay in seconds (doubles each attempt)
    """
    timeout: float = 10.0
    max_retries: int = 3
    backoff_base: float = 1.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before the attempt after ``attempt`` (0-based): base, 2*base, 4*base..."""
        return self.backoff_base * (2 ** attempt)


async def call_with_retry(
    operation: str,
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Await ``func()`` under a timeout, retrying with exponential backoff.

    Args:
        operation: Description of the operation (used in logs and errors)
        func: Zero-argument coroutine factory; called once per attempt
        policy: Timeout and retry settings
        sleep: Awaitable sleep used between attempts (injectable for tests)

    Returns:
        Result of the first successful attempt

    Raises:
        DependencyError: If every attempt failed or the error is not retryable
        asyncio.CancelledError: If the caller cancels the operation
    """
    last_error: Exception = DependencyError.timeout(operation, policy.timeout)
    attempts = max(1, policy.max_retries)

    for attempt in range(attempts):
        try:
            logger.debug(f"{operation} (attempt {attempt + 1}/{attempts})")
            return await asyncio.wait_for(func(), timeout=policy.timeout)

        except asyncio.TimeoutError as e:
            last_error = DependencyError.timeout(operation, policy.timeout, e)
            logger.warning(
                f"{operation} timed out (attempt {attempt + 1}/{attempts}) "
                f"after {policy.timeout}s"
            )

        except Exception as e:
            if not is_retryable(e):
                logger.error(f"{operation} failed with non-retryable error: {e}")
                raise
            last_error = e
            logger.warning(f"{operation} failed (attempt {attempt + 1}/{attempts}): {e}")

        if attempt < attempts - 1:
            wait_time = policy.delay_for(attempt)
            logger.info(f"Retrying {operation} in {wait_time} seconds...")
            await sleep(wait_time)

    logger.error(f"{operation} failed after {attempts} attempts: {last_error}")
    raise DependencyError.retries_exhausted(operation, attempts, last_error)


async def call_store(
    table: str,
    operation: str,
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    :func:`call_with_retry` for row-store calls.

    Backend exceptions are wrapped in ``DependencyError.query_failed`` so
    callers see the table and operation that failed. Errors already raised
    as ExposureError pass through unchanged.

    Args:
        table: Table the call targets
        operation: select, insert, update, subscribe, ...
        func: Zero-argument coroutine factory for the store call
        policy: Timeout and retry settings
        sleep: Awaitable sleep used between attempts

    Returns:
        Result of the first successful attempt
    """
    async def attempt() -> T:
        try:
            return await func()
        except ExposureError:
            raise
        except Exception as e:
            raise DependencyError.query_failed(table, operation, e) from e

    return await call_with_retry(f"{operation} {table}", attempt, policy, sleep=sleep)
