import asyncio
import json
from typing import (
    Any,
    Dict,
    Sequence,
)

from lake._utils.asyncio_utils import gather_or_cancel
from lake._utils.logging import get_logger
from lake.config import (
    LakeConfig,
    RetryPolicy,
)
from lake.constants import (
    BLOCK_KEY_TEMPLATE,
    SHARD_KEY_TEMPLATE,
)
from lake.exceptions import (
    MalformedContent,
    ObjectNotFound,
    RetriesExhausted,
    TransientStorageError,
)
from lake.storage.abc import ObjectStoreAPI
from lake.streamer.limiter import HeightPriorityLimiter
from lake.typing import (
    BlockHeight,
    BlockView,
    ShardView,
    StreamerMessage,
)


def block_key(height: BlockHeight) -> str:
    return BLOCK_KEY_TEMPLATE.format(height=height)


def shard_key(height: BlockHeight, shard_id: int) -> str:
    return SHARD_KEY_TEMPLATE.format(height=height, shard_id=shard_id)


def _decode_json_object(key: str, payload: bytes) -> Dict[str, Any]:
    try:
        decoded = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as err:
        raise MalformedContent(key, f"invalid JSON: {err}") from err

    if not isinstance(decoded, dict):
        raise MalformedContent(key, f"expected a JSON object, got {type(decoded).__name__}")
    return decoded


def decode_block(key: str, height: BlockHeight, payload: bytes) -> BlockView:
    block = _decode_json_object(key, payload)

    header = block.get('header')
    if not isinstance(header, dict):
        raise MalformedContent(key, "missing block header")
    for field in ('height', 'hash', 'prev_hash'):
        if field not in header:
            raise MalformedContent(key, f"block header has no {field!r}")
    if header['height'] != height:
        raise MalformedContent(key, f"block header is for height {header['height']}")
    if not isinstance(block.get('chunks'), list):
        raise MalformedContent(key, "missing the list of chunks")

    return block


def decode_shard(key: str, shard_id: int, payload: bytes) -> ShardView:
    shard = _decode_json_object(key, payload)

    if shard.get('shard_id', shard_id) != shard_id:
        raise MalformedContent(key, f"expected shard {shard_id}, got shard {shard['shard_id']}")

    return shard


class BlockFetcher:
    """
    Download and assemble the :class:`~lake.typing.StreamerMessage` of a single height:
    the ``block.json`` object plus one ``shard_N.json`` object per chunk of the block.

    All GET requests of all the heights fetched through one instance share a budget of
    ``fetch_concurrency`` simultaneous requests, and the lowest height waiting for a
    request gets the next free one.

    Failures of a single GET are handled here:

    - :class:`~lake.exceptions.ObjectNotFound`: the height was listed but the object is not
      readable yet. Try again after ``not_found_retry_delay``; this is only given up on if
      ``not_found_max_attempts`` is set.
    - :class:`~lake.exceptions.TransientStorageError`: exponential backoff per the fetch
      retry policy, then :class:`~lake.exceptions.RetriesExhausted`.
    - any other :class:`~lake.exceptions.StorageError` and
      :class:`~lake.exceptions.MalformedContent` propagate immediately.
    """
    logger = get_logger('lake.streamer.fetchers.BlockFetcher')

    def __init__(self,
                 object_store: ObjectStoreAPI,
                 bucket: str,
                 fetch_concurrency: int,
                 retry_policy: RetryPolicy,
                 not_found_retry_delay: float,
                 not_found_max_attempts: int = None,
                 shard_count: int = None) -> None:
        self._object_store = object_store
        self._bucket = bucket
        self._retry_policy = retry_policy
        self._not_found_retry_delay = not_found_retry_delay
        self._not_found_max_attempts = not_found_max_attempts
        self._shard_count = shard_count
        self._request_limiter = HeightPriorityLimiter(fetch_concurrency)

        self.num_requests = 0
        self.num_retries = 0

    @classmethod
    def from_config(cls, object_store: ObjectStoreAPI, config: LakeConfig) -> 'BlockFetcher':
        return cls(
            object_store,
            config.s3_bucket_name,
            config.fetch_concurrency,
            config.fetch_retry_policy,
            config.not_found_retry_delay,
            config.not_found_max_attempts,
            config.shard_count,
        )

    async def fetch_streamer_message(self, height: BlockHeight) -> StreamerMessage:
        if self._shard_count is None:
            # The number of shards is only known once the block itself is decoded
            block = await self.fetch_block(height)
            shards = await self._fetch_shards(height, len(block['chunks']))
        else:
            block, *shard_list = await gather_or_cancel(
                self.fetch_block(height),
                *(self.fetch_shard(height, shard_id) for shard_id in range(self._shard_count)),
            )
            if len(block['chunks']) != self._shard_count:
                raise MalformedContent(
                    block_key(height),
                    f"block has {len(block['chunks'])} chunks, expected {self._shard_count}",
                )
            shards = tuple(shard_list)

        return StreamerMessage(block, shards)

    async def fetch_block(self, height: BlockHeight) -> BlockView:
        key = block_key(height)
        payload = await self._get_object_or_retry(height, key)
        return decode_block(key, height, payload)

    async def fetch_shard(self, height: BlockHeight, shard_id: int) -> ShardView:
        key = shard_key(height, shard_id)
        payload = await self._get_object_or_retry(height, key)
        return decode_shard(key, shard_id, payload)

    async def _fetch_shards(self, height: BlockHeight, shard_count: int) -> Sequence[ShardView]:
        return await gather_or_cancel(
            *(self.fetch_shard(height, shard_id) for shard_id in range(shard_count))
        )

    async def _get_object_or_retry(self, height: BlockHeight, key: str) -> bytes:
        transient_failures = 0
        not_found_failures = 0

        while True:
            try:
                async with self._request_limiter.slot(height):
                    self.num_requests += 1
                    return await self._object_store.get_object(self._bucket, key)
            except ObjectNotFound as err:
                not_found_failures += 1
                if self._not_found_max_attempts is not None:
                    if not_found_failures >= self._not_found_max_attempts:
                        raise RetriesExhausted(f"reading {key}", not_found_failures) from err
                delay = self._not_found_retry_delay
                self.logger.debug(
                    "%s is not available yet (attempt %d). Retrying in %.2fs",
                    key,
                    not_found_failures,
                    delay,
                )
            except TransientStorageError as err:
                transient_failures += 1
                if transient_failures >= self._retry_policy.max_attempts:
                    raise RetriesExhausted(f"reading {key}", transient_failures) from err
                delay = self._retry_policy.backoff(transient_failures - 1)
                self.logger.debug(
                    "Failed to read %s (attempt %d/%d): %s. Retrying in %.2fs",
                    key,
                    transient_failures,
                    self._retry_policy.max_attempts,
                    err,
                    delay,
                )

            self.num_retries += 1
            await asyncio.sleep(delay)
