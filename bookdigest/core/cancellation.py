"""Cooperative cancellation shared by every stage of a pipeline run."""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from bookdigest.core.errors import StageCancelled

T = TypeVar("T")


class CancellationToken:
    """One token per pipeline run; cancelling it aborts the in-flight stage."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Cancelled by user") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise StageCancelled(self.reason or "Stage was cancelled")

    async def wait(self) -> None:
        await self._event.wait()


async def run_cancellable(awaitable: Awaitable[T], token: CancellationToken | None) -> T:
    """
    Await ``awaitable`` unless ``token`` is cancelled first.

    When the token fires, the underlying task is cancelled (which tears down
    an in-flight HTTP request) and StageCancelled is raised.

    Args:
        awaitable: Coroutine or future to run
        token: Cancellation token, or None to await without cancellation

    Returns:
        The awaitable's result

    Raises:
        StageCancelled: If the token was cancelled before completion
    """
    if token is None:
        return await awaitable

    task = asyncio.ensure_future(awaitable)
    if token.cancelled:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        token.raise_if_cancelled()

    waiter = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()

    if task in done:
        return task.result()

    task.cancel()
    # Let the task unwind (closing its stream/connection) before reporting
    await asyncio.gather(task, return_exceptions=True)
    token.raise_if_cancelled()
    raise StageCancelled()
