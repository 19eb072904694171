try:
    import factory
except ImportError:
    raise ImportError("The lake.tools.factories module requires the `factory_boy` library.")

from typing import (
    Iterable,
    List,
    Tuple,
)

from lake.typing import (
    BlockHeight,
    StreamerMessage,
)

from .blocks import (
    BlockHeaderViewFactory,
    BlockViewFactory,
    CryptoHashFactory,
)
from .shards import ShardViewFactory


class StreamerMessageFactory(factory.Factory):
    """
    A :class:`~lake.typing.StreamerMessage` whose block has ``shard_count`` chunks and as
    many shards.
    """
    class Meta:
        model = StreamerMessage

    class Params:
        height = factory.Sequence(lambda n: n)
        prev_hash = factory.SubFactory(CryptoHashFactory)
        shard_count = 1

    block = factory.LazyAttribute(lambda message: BlockViewFactory(
        shard_count=message.shard_count,
        header=BlockHeaderViewFactory(height=message.height, prev_hash=message.prev_hash),
    ))
    shards = factory.LazyAttribute(lambda message: tuple(
        ShardViewFactory(shard_id=shard_id) for shard_id in range(message.shard_count)
    ))


def build_chain(heights: Iterable[int], shard_count: int = 1) -> Tuple[StreamerMessage, ...]:
    """
    Build one message per height, each block's ``prev_hash`` being the hash of the block
    before it in ``heights``.
    """
    messages: List[StreamerMessage] = []
    for height in heights:
        if messages:
            message = StreamerMessageFactory(
                height=BlockHeight(height),
                prev_hash=messages[-1].block_hash,
                shard_count=shard_count,
            )
        else:
            message = StreamerMessageFactory(height=BlockHeight(height), shard_count=shard_count)
        messages.append(message)
    return tuple(messages)
