"""Async retry with exponential backoff.

Used where a single call may fail for a while before it works, e.g. SSH to a
machine that is still booting:

    @retry(on=(OSError, asyncssh.Error), max_attempts=30, base_delay=2.0, exponential_base=1.0)
    async def connect() -> SSHClientConnection:
        ...

    @retry(on=on_provider_code(ProviderErrorCode.THROTTLED))
    async def describe() -> list[RequestStatus]:
        ...

``backoff_delay`` is shared with ``providers.wait`` so polling and retries
grow the same way.
"""

from __future__ import annotations

import asyncio
import functools
import random
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

from loguru import logger

from spotburst.core.exceptions import ProviderError, ProviderErrorCode

P = ParamSpec("P")
T = TypeVar("T")

type RetryPredicate = Callable[[Exception], bool]
type RetryOn = type[Exception] | tuple[type[Exception], ...] | RetryPredicate

log = logger.bind(component="retry")


def backoff_delay(
    attempt: int,
    *,
    base_delay: float,
    exponential_base: float = 2.0,
    max_delay: float = 60.0,
    jitter: bool = True,
) -> float:
    """Seconds to wait after failed attempt number ``attempt`` (0-based).

    ``base_delay * exponential_base**attempt``, capped at ``max_delay``, plus
    up to 10% jitter.
    """
    delay = min(base_delay * exponential_base**attempt, max_delay)
    if jitter and delay > 0:
        delay += random.uniform(0, delay / 10)
    return delay


def _as_predicate(on: RetryOn) -> RetryPredicate:
    match on:
        case type() | tuple():
            exc_types = on
            return lambda e: isinstance(e, exc_types)
        case _:
            return on


def retry(
    on: RetryOn = Exception,
    max_attempts: int = 5,
    base_delay: float = 1.0,
    exponential_base: float = 2.0,
    max_delay: float = 60.0,
    jitter: bool = True,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Retry an async function while it raises retryable exceptions.

    Args:
        on: Exception type, tuple of types, or predicate deciding whether an
            exception is retried. Anything else propagates at once.
        max_attempts: Total calls, the first one included.
        base_delay: Delay after the first failure, in seconds.
        exponential_base: Growth factor per failure. 1.0 gives a fixed delay.
        max_delay: Upper bound for a single delay.
        jitter: Add up to 10% random jitter.

    The last exception is re-raised once attempts run out.
    """
    should_retry = _as_predicate(on)

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    attempt += 1
                    if attempt >= max_attempts or not should_retry(e):
                        raise

                    delay = backoff_delay(
                        attempt - 1,
                        base_delay=base_delay,
                        exponential_base=exponential_base,
                        max_delay=max_delay,
                        jitter=jitter,
                    )
                    log.debug(
                        "{fn} failed ({n}/{max}): {err}; retrying in {delay:.1f}s",
                        fn=func.__name__,
                        n=attempt,
                        max=max_attempts,
                        err=e,
                        delay=delay,
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator


def on_provider_code(*codes: ProviderErrorCode) -> RetryPredicate:
    """Predicate matching ``ProviderError``s classified with one of ``codes``."""

    def predicate(e: Exception) -> bool:
        return isinstance(e, ProviderError) and e.code in codes

    return predicate
