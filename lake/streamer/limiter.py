import asyncio
from contextlib import asynccontextmanager
import heapq
import itertools
from typing import (
    AsyncIterator,
    List,
    Tuple,
)

from eth_utils import ValidationError

from lake.typing import BlockHeight


class HeightPriorityLimiter:
    """
    Bound the number of concurrent storage requests, handing each freed slot to the
    waiting request of the lowest block height.

    The consumer only ever waits for the oldest height being fetched, so its requests
    must not queue up behind the ones of the heights prefetched after it, however many
    of those there are.
    """
    def __init__(self, num_tokens: int) -> None:
        if num_tokens < 1:
            raise ValidationError(f"A limiter needs at least one token, got {num_tokens}")
        self.total_tokens = num_tokens
        self.borrowed_tokens = 0
        self._waiters: List[Tuple[BlockHeight, int, 'asyncio.Future[None]']] = []
        self._arrival = itertools.count()

    @property
    def available_tokens(self) -> int:
        return self.total_tokens - self.borrowed_tokens

    @property
    def num_waiting(self) -> int:
        return sum(1 for _, _, waiter in self._waiters if not waiter.done())

    async def acquire(self, height: BlockHeight) -> None:
        # tokens are handed over on release, so a free token means nobody is waiting for one
        if self.available_tokens > 0:
            self.borrowed_tokens += 1
            return

        waiter: 'asyncio.Future[None]' = asyncio.get_running_loop().create_future()
        # equal heights are served in arrival order
        heapq.heappush(self._waiters, (height, next(self._arrival), waiter))
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # the token was handed over right before we got cancelled
                self.release()
            raise

    def release(self) -> None:
        if self.borrowed_tokens <= 0:
            raise ValidationError("Attempt to release a token when there are no borrowed tokens")
        self.borrowed_tokens -= 1
        self._hand_over()

    @asynccontextmanager
    async def slot(self, height: BlockHeight) -> AsyncIterator[None]:
        await self.acquire(height)
        try:
            yield
        finally:
            self.release()

    def _hand_over(self) -> None:
        while self._waiters and self.available_tokens > 0:
            _, _, waiter = heapq.heappop(self._waiters)
            if waiter.done():
                # cancelled while waiting
                continue
            self.borrowed_tokens += 1
            waiter.set_result(None)

    def __repr__(self) -> str:
        return (
            f"HeightPriorityLimiter({self.borrowed_tokens}/{self.total_tokens}, "
            f"waiting={self.num_waiting})"
        )
