import asyncio
from collections import deque
from typing import (
    Callable,
    Deque,
    Dict,
    Optional,
)

from eth_utils import ValidationError

from lake.exceptions import PreloadPoolClosed
from lake.typing import (
    BlockHeight,
    StreamerMessage,
)


class PreloadPool:
    """
    Bounded reorder buffer between the block fetchers, which finish in any order, and the
    consumer, which must see the blocks in ascending height order.

    A height takes one of the ``capacity`` slots when it is reserved, before any request for
    it is made, and gives it back when its message is handed to the consumer. The slots
    therefore bound the heights being fetched plus the fetched-but-undelivered ones, and
    a producer that wants to start another fetch waits in :meth:`reserve` while the consumer
    is behind.

    Only reserved heights are ever waited for, so heights without data (skipped blocks)
    never stall the delivery: discovery simply never reserves them.

    All state changes happen in plain (non-async) code between two awaits of a single event
    loop, so each reserve, submit and delivery is atomic with respect to the others.
    Waiters re-check their condition whenever the state changed.
    """
    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValidationError(f"Preload pool capacity must be at least 1, got {capacity}")
        self._capacity = capacity
        self._reserved: Deque[BlockHeight] = deque()
        self._ready: Dict[BlockHeight, StreamerMessage] = {}
        self._last_reserved: Optional[BlockHeight] = None
        self._changed = asyncio.Event()
        self._is_closed = False

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def cursor(self) -> Optional[BlockHeight]:
        """
        The next height to be delivered, or ``None`` if no height is reserved.
        """
        if self._reserved:
            return self._reserved[0]
        else:
            return None

    @property
    def reserved_count(self) -> int:
        return len(self._reserved)

    @property
    def ready_count(self) -> int:
        return len(self._ready)

    @property
    def is_closed(self) -> bool:
        return self._is_closed

    def has_capacity(self) -> bool:
        return len(self._reserved) < self._capacity

    async def reserve(self, height: BlockHeight) -> None:
        """
        Take a slot for ``height``, waiting until one is free. Heights must be reserved in
        strictly ascending order.
        """
        if self._last_reserved is not None and height <= self._last_reserved:
            raise ValidationError(
                f"Heights must be reserved in ascending order: #{height} after "
                f"#{self._last_reserved}"
            )

        await self._wait_until(self.has_capacity)
        if self._is_closed:
            raise PreloadPoolClosed(f"Cannot reserve #{height}, the preload pool is closed")

        self._reserved.append(height)
        self._last_reserved = height

    def submit(self, height: BlockHeight, message: StreamerMessage) -> None:
        """
        Store the assembled message of a reserved height.
        """
        if self._is_closed:
            # The pipeline stopped while the block was in flight, nobody will deliver it
            return
        if height in self._ready:
            raise ValidationError(f"Block #{height} was already submitted to the preload pool")
        if height not in self._reserved:
            raise ValidationError(f"Block #{height} was never reserved in the preload pool")

        self._ready[height] = message
        if height == self._reserved[0]:
            self._notify()

    async def next_blocking(self) -> StreamerMessage:
        """
        Remove and return the message at the cursor, waiting until that specific height has
        been submitted. Raises :class:`~lake.exceptions.PreloadPoolClosed` once the pool is
        closed, even if later messages are ready.
        """
        await self._wait_until(self._is_cursor_ready)
        if self._is_closed:
            raise PreloadPoolClosed("The preload pool is closed")

        height = self._reserved.popleft()
        message = self._ready.pop(height)
        # a slot was freed for the reservers
        self._notify()
        return message

    def close(self) -> None:
        """
        Stop handing out messages and slots. Wakes up everybody waiting on the pool.
        """
        if self._is_closed:
            return
        self._is_closed = True
        self._ready.clear()
        self._notify()

    def _is_cursor_ready(self) -> bool:
        return bool(self._reserved) and self._reserved[0] in self._ready

    async def _wait_until(self, predicate: Callable[[], bool]) -> None:
        while not self._is_closed and not predicate():
            await self._changed.wait()

    def _notify(self) -> None:
        # Wake up the current waiters and give the next ones a fresh event to wait on
        changed, self._changed = self._changed, asyncio.Event()
        changed.set()

    def __repr__(self) -> str:
        return (
            f"PreloadPool(cursor={self.cursor}, reserved={self.reserved_count}/{self.capacity}, "
            f"ready={self.ready_count})"
        )
