"""Tenacity retry wrapper driven by RetryConfig."""

from __future__ import annotations

from collections.abc import Callable

from tenacity import (
    retry,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import RetryConfig


def with_retry(
    config: RetryConfig,
    *,
    retryable_exceptions: tuple[type[BaseException], ...] = (Exception,),
    fatal_exceptions: tuple[type[BaseException], ...] = (),
) -> Callable:
    """Return a tenacity retry decorator configured from *config*.

    Exceptions in *fatal_exceptions* are re-raised immediately even when
    they also match *retryable_exceptions*.

    Usage::

        @with_retry(config.retry, fatal_exceptions=(SessionConnectionError,))
        async def run_account() -> None: ...
    """
    return retry(
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_exponential(
            multiplier=config.multiplier,
            min=config.initial_wait_seconds,
            max=config.max_wait_seconds,
        ),
        retry=retry_if_exception_type(retryable_exceptions)
        & retry_if_not_exception_type(fatal_exceptions),
        reraise=True,
    )
