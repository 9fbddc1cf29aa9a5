"""asyncio helpers shared by the commands and the deploy package."""

import asyncio
import concurrent.futures
from collections.abc import Awaitable, Callable, Coroutine, Iterable
from typing import Any, TypeVar

from fleetctl.core.exceptions import TimeoutError

T = TypeVar("T")
R = TypeVar("R")


async def map_async(
    func: Callable[[T], Awaitable[R]],
    items: Iterable[T],
    concurrency: int = 10,
) -> list[R]:
    """Apply an async function to every item, at most ``concurrency`` at a time.

    Args:
        func: Async function to apply
        items: Items to process
        concurrency: Maximum calls in flight

    Returns:
        Results in input order
    """
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def limited(item: T) -> R:
        async with semaphore:
            return await func(item)

    return list(await asyncio.gather(*(limited(item) for item in items)))


async def run_with_timeout(
    aw: Awaitable[T],
    timeout: float,
    timeout_message: str = "Operation timed out",
) -> T:
    """Await ``aw``, cancelling it after ``timeout`` seconds.

    Raises:
        TimeoutError: If the deadline passes first
    """
    try:
        return await asyncio.wait_for(aw, timeout=timeout)
    except asyncio.TimeoutError:
        raise TimeoutError(timeout_message, timeout_seconds=int(timeout))


def run_sync(coro: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine to completion from synchronous click code."""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)

    # a loop is already running in this thread, so give the coroutine its own
    with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
        return pool.submit(asyncio.run, coro).result()
