"""Async helpers for running blocking store and filesystem calls on the event loop."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a blocking function in a worker thread without blocking the loop.

    Cancelling the awaiting task abandons the result; the thread itself
    finishes its current call.

    Example:
        rows = await run_sync(client.fetch, keys)
    """
    return await asyncio.to_thread(func, *args, **kwargs)


async def gather_bounded(
    factories: Iterable[Callable[[], Awaitable[T]]],
    limit: int,
) -> list[T]:
    """Await coroutines built by *factories* with at most *limit* in flight.

    Each factory is only called once a slot is free, so no more than
    *limit* files or requests are open at any moment.  Results are
    returned in input order; the first exception propagates once the
    remaining tasks have been cancelled and have finished.

    Args:
        factories: Zero-argument callables returning awaitables.
        limit: Maximum number of concurrently running awaitables.

    Returns:
        List of results in the same order as *factories*.
    """
    if limit < 1:
        raise ValueError(f"limit must be >= 1, got {limit}")
    semaphore = asyncio.Semaphore(limit)

    async def _bounded(factory: Callable[[], Awaitable[T]]) -> T:
        async with semaphore:
            return await factory()

    tasks = [asyncio.ensure_future(_bounded(f)) for f in factories]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
