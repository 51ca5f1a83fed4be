"""Generic wait/polling utilities.

Polls a provider until a condition holds, sleeping with bounded
exponential backoff between attempts.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Collection
from dataclasses import dataclass

from loguru import logger

from spotburst.core.exceptions import ProviderError, ProviderErrorCode
from spotburst.retry import backoff_delay


@dataclass(frozen=True, slots=True)
class PollPolicy:
    """Backoff between polls of one phase.

    Args:
        base_delay: Delay after the first unsuccessful poll, in seconds.
        max_delay: Upper bound for any single delay.
        exponential_base: Growth factor between consecutive delays.
        jitter: Add up to 10% random jitter.
        timeout: Give up after this many seconds. ``None`` polls forever.
    """

    base_delay: float = 1.0
    max_delay: float = 15.0
    exponential_base: float = 1.5
    jitter: bool = True
    timeout: float | None = None

    def delay(self, attempt: int) -> float:
        return backoff_delay(
            attempt,
            base_delay=self.base_delay,
            exponential_base=self.exponential_base,
            max_delay=self.max_delay,
            jitter=self.jitter,
        )


async def poll_until[T](
    poll_fn: Callable[[], Awaitable[T]],
    ready_check: Callable[[T], bool],
    *,
    policy: PollPolicy,
    terminal_check: Callable[[T], str | None] | None = None,
    retry_on: Collection[ProviderErrorCode] = (ProviderErrorCode.NOT_YET_VISIBLE,),
    description: str = "resource",
) -> T:
    """Poll until poll_fn returns something that passes ready_check.

    Args:
        poll_fn: Async function that polls for the resource state.
        ready_check: Returns True when the resource is ready.
        policy: Backoff and timeout between polls.
        terminal_check: Returns a reason when the resource reached a state
            it will never leave (e.g., failed, terminated).
        retry_on: Provider error codes that count as "not ready yet".
            Any other exception propagates immediately.
        description: Description for log and error messages.

    Returns:
        The ready resource.

    Raises:
        TimeoutError: If policy.timeout is exceeded.
        RuntimeError: If terminal_check reports a reason.
    """
    loop = asyncio.get_running_loop()
    start = loop.time()
    attempt = 0

    while True:
        try:
            result = await poll_fn()
        except ProviderError as e:
            if e.code not in retry_on:
                raise
            logger.debug(
                "Polling {what}: {code} ({err}), retrying",
                what=description,
                code=e.code,
                err=e,
            )
        else:
            if ready_check(result):
                return result

            if terminal_check is not None and (reason := terminal_check(result)):
                raise RuntimeError(f"{description} reached terminal state: {reason}")

        elapsed = loop.time() - start
        if policy.timeout is not None and elapsed > policy.timeout:
            raise TimeoutError(f"Timeout waiting for {description} after {policy.timeout:.1f}s")

        await asyncio.sleep(policy.delay(attempt))
        attempt += 1
