import asyncio
from typing import AsyncIterator

from lake._utils.logging import get_logger
from lake.config import RetryPolicy
from lake.exceptions import (
    RetriesExhausted,
    StorageError,
)
from lake.storage.abc import ObjectStoreAPI
from lake.typing import BlockHeight


async def stream_block_heights(object_store: ObjectStoreAPI,
                               bucket: str,
                               start_from_block_height: BlockHeight,
                               page_size: int,
                               tip_poll_interval: float,
                               retry_policy: RetryPolicy) -> AsyncIterator[BlockHeight]:
    """
    Yield, in ascending order, every height at or after ``start_from_block_height`` that has
    data in ``bucket``. Heights with no data (skipped blocks) are never yielded.

    One LIST request returns up to ``page_size`` heights, and the next request is only made
    once all of them have been consumed. At the tip of the chain the listing comes back
    empty: sleep ``tip_poll_interval`` and look again, forever.

    Storage errors on listing are retried according to ``retry_policy``; when that gives up,
    :class:`~lake.exceptions.RetriesExhausted` is raised.
    """
    logger = get_logger('lake.streamer.heights.stream_block_heights')
    next_height = start_from_block_height
    failed_attempts = 0

    while True:
        logger.debug2(
            "Listing up to %d block heights from #%d in %s",
            page_size,
            next_height,
            bucket,
        )
        try:
            listed_heights = await object_store.list_block_heights(bucket, next_height, page_size)
        except StorageError as err:
            failed_attempts += 1
            if failed_attempts >= retry_policy.max_attempts:
                raise RetriesExhausted(
                    f"listing block heights of {bucket} from #{next_height}",
                    failed_attempts,
                ) from err

            delay = retry_policy.backoff(failed_attempts - 1)
            logger.debug(
                "Failed to list block heights of %s (attempt %d/%d): %s. Retrying in %.2fs",
                bucket,
                failed_attempts,
                retry_policy.max_attempts,
                err,
                delay,
            )
            await asyncio.sleep(delay)
            continue
        else:
            failed_attempts = 0

        # the preload pool only accepts ascending heights
        new_heights = sorted(set(height for height in listed_heights if height >= next_height))

        if not new_heights:
            logger.debug(
                "There are no block heights from #%d in %s yet. Listing again in %.1fs",
                next_height,
                bucket,
                tip_poll_interval,
            )
            await asyncio.sleep(tip_poll_interval)
            continue

        logger.debug("Received %d new block heights", len(new_heights))
        next_height = BlockHeight(new_heights[-1] + 1)
        for height in new_heights:
            logger.debug2("Yielding block height #%d", height)
            yield BlockHeight(height)
