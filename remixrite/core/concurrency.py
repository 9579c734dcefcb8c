"""
Request-scoped fan-out helpers.

Adapters are blocking (psycopg2, requests, the GCS and OpenAI clients), so
every external call is pushed to a worker thread and given a deadline.
Relational store calls go through a ``BoundedExecutor`` sized to the
connection pool; everything else uses the loop's default thread pool.
"""

import asyncio
import contextvars
import functools
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Awaitable, Callable, List, Optional, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")

__all__ = ["BoundedExecutor", "call_with_timeout", "bounded_gather"]


class BoundedExecutor:
    """
    Runs blocking calls on at most ``limit`` threads.

    A slot is held until the thread returns, not until the caller stops
    waiting, so calls that outlive their deadline still count against the
    limit. Calls still queued when their caller gives up never run.
    """

    def __init__(self, limit: int, name: str = "store"):
        self.limit = max(1, limit)
        self.name = name
        self._executor = ThreadPoolExecutor(max_workers=self.limit, thread_name_prefix=f"remixrite-{name}")

    def submit(self, func: Callable[..., R], *args: Any, **kwargs: Any) -> "asyncio.Future[R]":
        loop = asyncio.get_running_loop()
        context = contextvars.copy_context()
        return loop.run_in_executor(self._executor, functools.partial(context.run, func, *args, **kwargs))

    def shutdown(self):
        self._executor.shutdown(wait=False, cancel_futures=True)


async def call_with_timeout(func: Callable[..., R], *args: Any, timeout: float,
                            executor: Optional[BoundedExecutor] = None, **kwargs: Any) -> R:
    """
    Run a blocking call in a thread and wait at most ``timeout`` seconds.

    On timeout the thread is left to finish on its own; the caller gets
    ``asyncio.TimeoutError``. With an ``executor`` the deadline includes time
    spent queued behind other calls.
    """
    if executor is not None:
        call = executor.submit(func, *args, **kwargs)
    else:
        call = asyncio.to_thread(func, *args, **kwargs)
    return await asyncio.wait_for(call, timeout)


async def bounded_gather(items: Sequence[T], worker: Callable[[T], Awaitable[R]], limit: int) -> List[R]:
    """
    Run ``worker`` over ``items`` with at most ``limit`` in flight.

    Results keep the order of ``items``. The first exception cancels the
    remaining tasks and propagates.
    """
    if not items:
        return []
    semaphore = asyncio.Semaphore(max(1, limit))
    results: List[Any] = [None] * len(items)

    async def _run(index: int, item: T) -> None:
        async with semaphore:
            results[index] = await worker(item)

    tasks = [asyncio.ensure_future(_run(index, item)) for index, item in enumerate(items)]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        raise
    return results
