"""Shared concurrency primitives for strategy fan-out and fan-in.

Two helpers are exposed:

1. **throttled_gather** -- ``asyncio.gather`` with every awaitable wrapped in
   a semaphore acquire/release, so at most N run at once.

2. **gather_settled** -- the fan-out/fan-in used by the engine: dispatch one
   awaitable per name, wait for *all* of them (no early return on the first
   completion or failure), and hand back each name's result or exception.
   Failures are logged here; deciding what a failure means is left to the
   caller.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Mapping, TypeVar

import structlog

from src.utils.logging import get_logger

_T = TypeVar("_T")

_logger: structlog.BoundLogger = get_logger(__name__)


async def throttled_gather(
    coros: list[Awaitable[_T]],
    semaphore: asyncio.Semaphore | None = None,
    return_exceptions: bool = True,
) -> list[_T | BaseException]:
    """Run awaitables concurrently with optional semaphore throttling.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    semaphore:
        Optional semaphore bounding how many run at once.  ``None`` means
        unbounded.
    return_exceptions:
        If ``True``, exceptions are returned in the results list rather
        than being raised.  Mirrors ``asyncio.gather`` semantics.

    Returns
    -------
    list[_T | BaseException]
        Results in the same order as the input coroutines.
    """
    if semaphore is None:
        return await asyncio.gather(*coros, return_exceptions=return_exceptions)

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    tasks = [_wrapped(c) for c in coros]
    return await asyncio.gather(*tasks, return_exceptions=return_exceptions)


async def gather_settled(
    named: Mapping[str, Awaitable[_T]],
    semaphore: asyncio.Semaphore | None = None,
    logger: structlog.BoundLogger | None = None,
    error_msg: str = "task_failed",
) -> dict[str, _T | Exception]:
    """Run named awaitables concurrently and wait for every one to settle.

    Parameters
    ----------
    named:
        Mapping of a display name to the awaitable to run.  Order is
        preserved in the returned dict.
    semaphore:
        Optional semaphore for concurrency control.
    logger:
        Structured logger used for failure warnings.
    error_msg:
        Event name logged for each failed awaitable.

    Returns
    -------
    dict[str, _T | Exception]
        Each name mapped to its result, or to the ``Exception`` it raised.
        Cancellation and other ``BaseException`` subclasses are not caught
        and propagate to the caller.
    """
    if logger is None:
        logger = _logger

    names = list(named)
    raw_results = await throttled_gather(
        [named[name] for name in names],
        semaphore=semaphore,
        return_exceptions=True,
    )

    settled: dict[str, _T | Exception] = {}
    for name, result in zip(names, raw_results):
        if isinstance(result, Exception):
            logger.warning(
                error_msg,
                name=name,
                error=str(result),
                error_type=type(result).__name__,
            )
            settled[name] = result
        elif isinstance(result, BaseException):
            raise result
        else:
            settled[name] = result
    return settled
