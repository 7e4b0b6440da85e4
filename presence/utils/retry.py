# ==============================================================================
# Retry Configuration
# ==============================================================================
"""
Shared retry configuration for network resilience.

Provides reusable tenacity policies with exponential backoff:

Light retry: 3 attempts over ~7 seconds (store writes, chunk delivery)
Fetch retry: configurable attempts with jitter (for membership fetches)
"""

import logging
from typing import Tuple, Type

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

# ==============================================================================
# Retry Constants
# ==============================================================================

RETRY_WAIT_MAX = 32  # seconds (cap for exponential backoff)

# Light retry configuration: 3 retries over ~7 seconds
RETRY_ATTEMPTS_LIGHT = 3

# Valkey retry configuration (used by redis-py client)
VALKEY_RETRIES = 10

REDIS_RETRY_EXCEPTIONS = (
    RedisConnectionError,
    RedisTimeoutError,
)


# ==============================================================================
# Logging Callbacks
# ==============================================================================


def log_retry_attempt(logger: logging.Logger, max_attempts: int = RETRY_ATTEMPTS_LIGHT):
    """
    Create a callback that logs retry attempts.

    Args:
        logger: Logger instance to use for logging
        max_attempts: Attempt budget shown in the log line

    Returns:
        Callback function for tenacity's before_sleep parameter
    """

    def _log_retry(retry_state: RetryCallState) -> None:
        exception = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Retry attempt %d/%d after error: %s",
            retry_state.attempt_number,
            max_attempts,
            exception,
        )

    return _log_retry


# ==============================================================================
# Fetch Retry
# ==============================================================================


def fetch_retrying(
    exception_types: Tuple[Type[BaseException], ...],
    logger: logging.Logger,
    max_retries: int,
    base_delay: float,
    max_delay: float,
    jitter_ratio: float = 0.25,
) -> AsyncRetrying:
    """
    Create an async retry controller for upstream fetches.

    Waits ``base * 2**n`` seconds capped at ``max_delay``, plus up to
    ``base * jitter_ratio`` of random jitter. ``max_retries`` counts retries,
    so the first attempt plus ``max_retries`` retries are made.

    Example:
        async for attempt in fetch_retrying((TransientFetchError,), logger, 3, 1.0, 30.0):
            with attempt:
                members = await transport.fetch_members(group_id)
    """
    return AsyncRetrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=base_delay, max=max_delay)
        + wait_random(0, base_delay * jitter_ratio),
        retry=retry_if_exception_type(exception_types),
        before_sleep=log_retry_attempt(logger, max_retries + 1),
        reraise=True,
    )
