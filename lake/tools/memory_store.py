import asyncio
import collections
import json
from typing import (
    Counter,
    DefaultDict,
    Deque,
    Dict,
    Iterable,
    List,
    Tuple,
)

from lake.exceptions import (
    ObjectNotFound,
    StorageError,
)
from lake.storage.abc import (
    ObjectStoreAPI,
    prefix_to_height,
)
from lake.streamer.fetchers import (
    block_key,
    shard_key,
)
from lake.typing import (
    BlockHeight,
    StreamerMessage,
)


class MemoryObjectStore(ObjectStoreAPI):
    """
    In-memory :class:`~lake.storage.abc.ObjectStoreAPI` for tests.

    Besides holding objects it can be scripted to fail specific requests, to answer
    slowly, and it counts what was asked of it.
    """
    def __init__(self) -> None:
        self._buckets: DefaultDict[str, Dict[str, bytes]] = collections.defaultdict(dict)
        self._get_failures: DefaultDict[str, Deque[Exception]] = collections.defaultdict(
            collections.deque,
        )
        self._list_failures: Deque[Exception] = collections.deque()
        self._latencies: Dict[str, float] = {}

        self.get_counts: Counter[str] = collections.Counter()
        self.listed_from: List[BlockHeight] = []
        self.num_gets_in_flight = 0
        self.max_gets_in_flight = 0

    #
    # Setup
    #
    def put_object(self, bucket: str, key: str, payload: bytes) -> None:
        self._buckets[bucket][key] = payload

    def delete_object(self, bucket: str, key: str) -> None:
        del self._buckets[bucket][key]

    def put_message(self, bucket: str, message: StreamerMessage) -> None:
        height = message.block_height
        self.put_object(bucket, block_key(height), json.dumps(message.block).encode())
        for shard_id, shard in enumerate(message.shards):
            self.put_object(bucket, shard_key(height, shard_id), json.dumps(shard).encode())

    def put_messages(self, bucket: str, messages: Iterable[StreamerMessage]) -> None:
        for message in messages:
            self.put_message(bucket, message)

    def fail_get(self, key: str, *errors: Exception) -> None:
        """
        Make the next GET requests of ``key`` raise ``errors``, one per request.
        """
        self._get_failures[key].extend(errors)

    def fail_list(self, *errors: Exception) -> None:
        self._list_failures.extend(errors)

    def set_latency(self, key: str, seconds: float) -> None:
        self._latencies[key] = seconds

    #
    # ObjectStoreAPI
    #
    async def list_block_heights(self,
                                 bucket: str,
                                 start_from: BlockHeight,
                                 limit: int) -> Tuple[BlockHeight, ...]:
        self.listed_from.append(start_from)
        # let the other tasks run, like a network round trip would
        await asyncio.sleep(0)

        if self._list_failures:
            raise self._list_failures.popleft()
        if bucket not in self._buckets:
            raise StorageError(f"NoSuchBucket: {bucket}")

        heights = sorted(set(
            prefix_to_height(key)
            for key in self._buckets[bucket]
        ))
        return tuple(height for height in heights if height >= start_from)[:limit]

    async def get_object(self, bucket: str, key: str) -> bytes:
        self.get_counts[key] += 1
        self.num_gets_in_flight += 1
        self.max_gets_in_flight = max(self.max_gets_in_flight, self.num_gets_in_flight)
        try:
            await asyncio.sleep(self._latencies.get(key, 0))

            if self._get_failures[key]:
                raise self._get_failures[key].popleft()
            try:
                return self._buckets.get(bucket, {})[key]
            except KeyError:
                raise ObjectNotFound(bucket, key)
        finally:
            self.num_gets_in_flight -= 1
