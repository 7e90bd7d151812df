"""
Cooperative cancellation for queue runs
"""
import asyncio
import logging
from typing import Awaitable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OperationCancelled(Exception):
    """Raised when a cancellable operation was stopped by its token"""


class CancellationToken:
    """One-shot flag shared between a queue run and its remote calls"""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self):
        if not self._event.is_set():
            logger.debug("Cancellation requested")
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self):
        await self._event.wait()

    def raise_if_cancelled(self):
        if self.cancelled:
            raise OperationCancelled("Operation cancelled")


async def run_cancellable(awaitable: Awaitable[T], token: CancellationToken) -> T:
    """
    Await ``awaitable`` unless ``token`` fires first

    When the token wins, the in-flight task is cancelled and awaited until it
    has unwound, then OperationCancelled is raised.
    """
    if token.cancelled:
        # Close an un-started coroutine so it does not warn about never being awaited
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise OperationCancelled("Operation cancelled")

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        waiter.cancel()
        await asyncio.gather(task, waiter, return_exceptions=True)
        raise

    if task.done():
        waiter.cancel()
        await asyncio.gather(waiter, return_exceptions=True)
        return task.result()

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    raise OperationCancelled("Operation cancelled")
