from abc import ABC, abstractmethod
from typing import Tuple

from lake.constants import HEIGHT_KEY_WIDTH
from lake.typing import BlockHeight


class ObjectStoreAPI(ABC):
    """
    The two storage calls the streamer is built on.

    Implementations signal failures through the exceptions in :mod:`lake.exceptions`:
    :class:`~lake.exceptions.ObjectNotFound` for missing objects,
    :class:`~lake.exceptions.TransientStorageError` for failures worth retrying and
    :class:`~lake.exceptions.StorageError` for everything else.
    """

    @abstractmethod
    async def list_block_heights(self,
                                 bucket: str,
                                 start_from: BlockHeight,
                                 limit: int) -> Tuple[BlockHeight, ...]:
        """
        Return up to ``limit`` heights that have a directory in ``bucket``, starting at
        ``start_from`` (inclusive), in ascending order. An empty result means there is
        nothing at or beyond ``start_from`` yet.
        """
        ...

    @abstractmethod
    async def get_object(self, bucket: str, key: str) -> bytes:
        """
        Return the full content of the object at ``key``.
        """
        ...


def height_to_prefix(height: BlockHeight) -> str:
    return str(height).zfill(HEIGHT_KEY_WIDTH)


def prefix_to_height(prefix: str) -> BlockHeight:
    """
    Parse a common prefix like ``000000000100/`` into a height. Raises ``ValueError`` for
    prefixes that are not block directories.
    """
    head = prefix.split('/', 1)[0]
    if not head.isdigit():
        raise ValueError(f"Not a block height prefix: {prefix!r}")
    return BlockHeight(int(head))
