from typing import (
    AsyncIterable,
    AsyncIterator,
    Optional,
    TypeVar,
)

from eth_utils import ValidationError


TYield = TypeVar('TYield')


async def async_take(take_count: Optional[int],
                     iterator: AsyncIterable[TYield]) -> AsyncIterator[TYield]:
    """
    Yield at most ``take_count`` items of ``iterator``. ``None`` passes every item through.

    The source is not pulled again once the count is reached, so a lazily produced stream
    does no work for items nobody asked for.
    """
    if take_count is None:
        async for val in iterator:
            yield val
    elif take_count < 0:
        raise ValidationError(f"Cannot take a negative number of items: tried to take {take_count}")
    elif take_count == 0:
        return
    else:
        taken = 0
        async for val in iterator:
            taken += 1
            yield val
            if taken == take_count:
                break
