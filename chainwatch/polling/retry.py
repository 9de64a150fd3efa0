"""
Retry policy for chain lookups.

How many attempts are made and how long to wait between them comes from
RetryConfig; the poller only says what to retry and until when.
"""

import asyncio
import random
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

import structlog

from chainwatch.polling.config import BackoffStrategy, RetryConfig

logger = structlog.get_logger()

T = TypeVar("T")


def backoff_delay(config: RetryConfig, attempt: int) -> float:
    """
    Seconds to sleep after the failed attempt with 0-based index ``attempt``.

    Always 0 for ``BackoffStrategy.NONE``; otherwise capped at
    ``config.max_delay`` before jitter is applied.
    """
    if config.strategy == BackoffStrategy.NONE:
        return 0.0

    base = config.initial_delay
    if config.strategy == BackoffStrategy.EXPONENTIAL:
        base *= config.exponential_base**attempt
    delay = min(base, config.max_delay)

    return delay * random.uniform(0.5, 1.0) if config.jitter else delay


async def retry_with_policy(
    func: Callable[[], Awaitable[T]],
    config: RetryConfig,
    operation_name: str = "operation",
    deadline: Optional[float] = None,
    give_up_on: Tuple[Type[BaseException], ...] = (),
) -> T:
    """
    Await ``func()`` until it succeeds or the policy says stop.

    Args:
        func: Zero-argument coroutine factory, called once per attempt
        config: Retry configuration
        operation_name: Name for logging
        deadline: Event-loop time after which no new attempt is started.
            An attempt already running is never interrupted.
        give_up_on: Exception types raised immediately, without retrying

    Raises:
        Exception: The error of the last attempt made
    """
    loop = asyncio.get_running_loop()
    attempt = 0

    while True:
        try:
            return await func()
        except give_up_on:
            raise
        except Exception as e:
            attempt += 1
            if attempt >= config.max_attempts:
                logger.error(
                    "retry.exhausted",
                    operation=operation_name,
                    attempts=attempt,
                    error=str(e),
                )
                raise
            if deadline is not None and loop.time() >= deadline:
                logger.error(
                    "retry.deadline_exceeded",
                    operation=operation_name,
                    attempts=attempt,
                    error=str(e),
                )
                raise

            delay = backoff_delay(config, attempt - 1)
            logger.warning(
                "retry.attempt_failed",
                operation=operation_name,
                attempt=attempt,
                max_attempts=config.max_attempts,
                delay_seconds=delay,
                error=str(e),
            )
            if delay:
                await asyncio.sleep(delay)
