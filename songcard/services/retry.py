"""
SongCard - Retry with exponential backoff

:func:`retry` wraps any coroutine factory.  Attempts are strictly
sequential; between attempts the delay grows by ``backoff_factor`` up to
``max_delay_ms``.  An optional ``abort`` event lets an aggregate deadline
stop every branch of a fan-out, which is what :func:`gather_with_deadline`
uses for the parallel metadata + lyrics fetch.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional, Tuple, TypeVar

from loguru import logger

from songcard.errors import RetryExhausted, UpstreamTimeout
from songcard.models import RetryPolicy

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]

DEFAULT_POLICY = RetryPolicy()


async def retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy = DEFAULT_POLICY,
    *,
    abort: Optional[asyncio.Event] = None,
    sleep: Sleep = asyncio.sleep,
    label: str = "operation",
) -> T:
    """Run *operation* until it succeeds or ``policy.max_attempts`` is reached.

    Raises :class:`RetryExhausted` (chained from the last error) when every
    attempt fails, or :class:`UpstreamTimeout` when *abort* is set.
    Task cancellation is never retried.
    """
    delay_ms = policy.initial_delay_ms
    last_error: Optional[BaseException] = None

    for attempt in range(1, policy.max_attempts + 1):
        if abort is not None and abort.is_set():
            raise UpstreamTimeout(f"{label} aborted before attempt {attempt}")

        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            last_error = e
            if attempt == policy.max_attempts:
                break
            logger.warning(
                "⚠️ {} attempt {}/{} failed: {}",
                label,
                attempt,
                policy.max_attempts,
                e,
            )

        # Back off before retrying
        delay_ms = min(delay_ms * policy.backoff_factor, policy.max_delay_ms)
        await _pause(delay_ms / 1000, abort, sleep, label)

    assert last_error is not None
    logger.error("❌ {} failed after {} attempts: {}", label, policy.max_attempts, last_error)
    raise RetryExhausted(policy.max_attempts, last_error) from last_error


async def _pause(
    seconds: float,
    abort: Optional[asyncio.Event],
    sleep: Sleep,
    label: str,
) -> None:
    """Sleep for *seconds*, waking early (and failing) if *abort* fires."""
    if abort is None:
        await sleep(seconds)
        return

    sleeper = asyncio.ensure_future(sleep(seconds))
    waiter = asyncio.ensure_future(abort.wait())
    try:
        await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (sleeper, waiter):
            if not task.done():
                task.cancel()
    if abort.is_set():
        raise UpstreamTimeout(f"{label} aborted while backing off")


async def gather_with_deadline(
    *operations: Callable[[asyncio.Event], Awaitable[Any]],
    timeout: float,
    label: str = "fan-out",
) -> Tuple[Any, ...]:
    """Run several operations concurrently under one shared deadline.

    Each operation receives the shared abort event (to pass on to
    :func:`retry`).  When the deadline passes the event is set, every
    branch is cancelled and :class:`UpstreamTimeout` is raised.  If any
    branch fails the others are cancelled and that error propagates.
    """
    abort = asyncio.Event()
    tasks = [asyncio.ensure_future(op(abort)) for op in operations]
    try:
        return tuple(await asyncio.wait_for(asyncio.gather(*tasks), timeout=timeout))
    except asyncio.TimeoutError:
        abort.set()
        logger.warning("⏱️ {} exceeded its {}s deadline", label, timeout)
        raise UpstreamTimeout(f"{label} timed out after {timeout}s") from None
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
