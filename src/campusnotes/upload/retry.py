"""Bounded exponential-backoff retry.

This module provides:

* :func:`compute_backoff` -- the delay before the next attempt.
* :func:`with_retry` -- run a coroutine function until it succeeds, the
  attempt budget is spent, or it fails in a non-retryable way.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

T = TypeVar("T")


def compute_backoff(
    attempt: int,
    base: float = 1.0,
    maximum: float = 30.0,
    jitter: bool = False,
) -> float:
    """Compute the delay before the next retry attempt.

    The delay follows ``base * 2^attempt`` capped at *maximum*.  With
    *jitter* enabled it is randomly scaled to 50-100 % of that value.

    Parameters
    ----------
    attempt:
        Number of the attempt that just failed (0-indexed).
    base:
        Base delay in seconds.
    maximum:
        Maximum delay cap in seconds.
    jitter:
        Whether to apply random jitter.

    Returns
    -------
    float
        Delay in seconds.
    """
    delay = min(base * (2 ** attempt), maximum)
    if jitter:
        delay *= 0.5 + random.random() * 0.5
    return delay


async def with_retry(
    op: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    *,
    max_delay: float = 30.0,
    jitter: bool = False,
    retry_on: Callable[[Exception], bool] | None = None,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    on_retry: Callable[[int, Exception, float], None] | None = None,
) -> T:
    """Await ``op()`` up to *max_attempts* times.

    After failed attempt *n* (1-indexed) the scheduler waits
    ``base_delay * 2**(n-1)`` seconds before the next one.  The final
    attempt is never followed by a wait: its error propagates unchanged.

    Parameters
    ----------
    op:
        Zero-argument coroutine function; called once per attempt.
    max_attempts:
        Total attempts, including the first.
    base_delay:
        Delay in seconds after the first failure.
    max_delay:
        Cap on any single delay.
    jitter:
        Apply random jitter to each delay.
    retry_on:
        Predicate deciding whether an error is worth another attempt.
        Errors it rejects propagate immediately.  Defaults to retrying
        every ``Exception``.
    sleep:
        Awaitable sleep function (injectable for tests).
    on_retry:
        Called with ``(attempt, error, delay)`` before each wait.

    Raises
    ------
    Exception
        The last error raised by *op*.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    for attempt in range(max_attempts):
        try:
            return await op()
        except Exception as exc:
            if attempt + 1 >= max_attempts:
                raise
            if retry_on is not None and not retry_on(exc):
                raise
            delay = compute_backoff(attempt, base=base_delay, maximum=max_delay, jitter=jitter)
            if on_retry is not None:
                on_retry(attempt + 1, exc, delay)
            await sleep(delay)

    raise AssertionError("unreachable")  # pragma: no cover
