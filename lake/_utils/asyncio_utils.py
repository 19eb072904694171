import asyncio
import contextlib
from typing import (
    Any,
    Awaitable,
    Sequence,
    Tuple,
    TypeVar,
)

from lake._utils.logging import get_logger


TReturn = TypeVar('TReturn')


async def gather_or_cancel(*awaitables: Awaitable[TReturn]) -> Tuple[TReturn, ...]:
    """
    Like ``asyncio.gather()``, but as soon as one of the awaitables fails (or we are
    cancelled) every other one is cancelled and awaited before the error propagates.
    """
    tasks = [asyncio.ensure_future(awaitable) for awaitable in awaitables]
    try:
        return tuple(await asyncio.gather(*tasks))
    finally:
        await cancel_pending(tasks)


async def cancel_pending(tasks: Sequence['asyncio.Future[Any]']) -> None:
    """
    Cancel the tasks that are not done yet, wait for them to return, and mark the errors
    of all of them as retrieved.
    """
    cancelled = [task for task in tasks if not task.done()]
    for task in cancelled:
        task.cancel()

    if cancelled:
        logger = get_logger('lake._utils.asyncio_utils.cancel_pending')
        logger.debug2("Cancelled %d tasks, waiting for them to return", len(cancelled))
        await asyncio.wait(cancelled)

    # the caller raises the error that matters
    for task in tasks:
        with contextlib.suppress(asyncio.CancelledError):
            task.exception()
