from typing import (
    Any,
    Dict,
    NamedTuple,
    NewType,
    Tuple,
)


BlockHeight = NewType('BlockHeight', int)

CryptoHash = NewType('CryptoHash', str)

# Decoded JSON documents, as read from the bucket
BlockView = Dict[str, Any]
ShardView = Dict[str, Any]


class StreamerMessage(NamedTuple):
    """
    Everything the bucket holds for a single block height: the decoded ``block.json`` and
    the decoded ``shard_N.json`` documents, ordered by shard id.
    """
    block: BlockView
    shards: Tuple[ShardView, ...]

    @property
    def block_height(self) -> BlockHeight:
        return BlockHeight(self.block['header']['height'])

    @property
    def block_hash(self) -> CryptoHash:
        return CryptoHash(self.block['header']['hash'])

    @property
    def prev_block_hash(self) -> CryptoHash:
        return CryptoHash(self.block['header']['prev_hash'])

    def __repr__(self) -> str:
        return f"StreamerMessage(#{self.block_height}, shards={len(self.shards)})"
