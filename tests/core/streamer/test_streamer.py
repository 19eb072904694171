import asyncio

from eth_utils import ValidationError
import pytest

from lake._utils.async_iter import async_take
from lake.config import LakeConfig
from lake.context import LakeContextAPI
from lake.exceptions import (
    MalformedContent,
    ObjectNotFound,
    RetriesExhausted,
)
from lake.streamer import (
    PipelineState,
    StopReason,
    run,
    streamer,
)
from lake.streamer.fetchers import (
    block_key,
    shard_key,
)
from lake.tools.factories import build_chain
from lake.tools.memory_store import MemoryObjectStore


BUCKET = 'test-bucket'


def _config(start_block_height, **kwargs):
    tuning = dict(
        tip_poll_interval=0.001,
        retry_initial_delay=0.001,
        retry_max_delay=0.001,
        not_found_retry_delay=0.001,
        continuity_retry_delay=0.001,
    )
    tuning.update(kwargs)
    return LakeConfig(BUCKET, 'eu-central-1', start_block_height, **tuning)


def _store_with_chain(*heights, shard_count=1):
    store = MemoryObjectStore()
    messages = build_chain(heights, shard_count=shard_count)
    store.put_messages(BUCKET, messages)
    return store, messages


async def _take(stream, count, timeout=2):
    async def _collect():
        return [message async for message in async_take(count, stream)]
    return await asyncio.wait_for(_collect(), timeout=timeout)


class RecordingContext(LakeContextAPI):
    def __init__(self, name, events):
        self.name = name
        self.events = events

    def before_delivery(self, message):
        self.events.append(('before', self.name, message.block_height))

    def after_delivery(self, message):
        self.events.append(('after', self.name, message.block_height))


class FailingContext(LakeContextAPI):
    def __init__(self, failing_height):
        self.failing_height = failing_height

    def before_delivery(self, message):
        if message.block_height == self.failing_height:
            raise RuntimeError(f"Cannot index #{message.block_height}")

    def after_delivery(self, message):
        pass


class HandlingDone(Exception):
    pass


@pytest.mark.asyncio
async def test_streams_existing_heights_in_order():
    store, messages = _store_with_chain(100, 101, 103)

    async with streamer(_config(100), store) as stream:
        delivered = await _take(stream, 3)
        assert stream.state is PipelineState.STREAMING

    assert delivered == list(messages)
    assert [message.block_height for message in delivered] == [100, 101, 103]


@pytest.mark.asyncio
async def test_starts_at_the_first_existing_height():
    store, _ = _store_with_chain(10, 20, 30)

    async with streamer(_config(15), store) as stream:
        delivered = await _take(stream, 2)

    assert [message.block_height for message in delivered] == [20, 30]


@pytest.mark.asyncio
async def test_slow_block_holds_back_the_ones_after_it():
    store, messages = _store_with_chain(5, 6, 7)
    store.set_latency(block_key(5), 0.05)

    async with streamer(_config(5, blocks_preload_pool_size=2), store) as stream:
        await asyncio.sleep(0.02)
        # 5 and 6 hold the two slots, 7 is not admitted before 5 is delivered
        assert store.get_counts[block_key(6)] == 1
        assert store.get_counts[block_key(7)] == 0

        delivered = await _take(stream, 3)

    assert [message.block_height for message in delivered] == [5, 6, 7]


@pytest.mark.asyncio
async def test_prefetching_is_bounded_by_the_pool_size():
    store, _ = _store_with_chain(*range(10))

    async with streamer(_config(0, blocks_preload_pool_size=3), store) as stream:
        await asyncio.sleep(0.05)
        assert len([key for key in store.get_counts if key.endswith('block.json')]) == 3

        first = await _take(stream, 1)
        await asyncio.sleep(0.02)
        assert len([key for key in store.get_counts if key.endswith('block.json')]) == 4

    assert first[0].block_height == 0


@pytest.mark.asyncio
async def test_waits_for_objects_that_are_not_readable_yet():
    store, messages = _store_with_chain(1, 2, shard_count=2)
    missing_key = shard_key(2, 1)
    store.fail_get(missing_key, *(ObjectNotFound(BUCKET, missing_key) for _ in range(3)))

    async with streamer(_config(1), store) as stream:
        delivered = await _take(stream, 2)

    assert delivered == list(messages)
    assert store.get_counts[missing_key] == 4


@pytest.mark.asyncio
async def test_malformed_block_stops_the_stream():
    store, _ = _store_with_chain(1, 2, 3)
    store.put_object(BUCKET, block_key(2), b'definitely not json')

    async with streamer(_config(1), store) as stream:
        delivered = await _take(stream, None)

        assert stream.state is PipelineState.FAILED
        with pytest.raises(MalformedContent):
            await stream.completion.wait()

    assert [message.block_height for message in delivered] in ([], [1])
    assert stream.state is PipelineState.FAILED
    assert isinstance(stream.completion.error, MalformedContent)


@pytest.mark.asyncio
async def test_listing_failures_stop_the_stream_once_retries_are_exhausted():
    store = MemoryObjectStore()

    async with streamer(_config(1, list_max_attempts=2), store) as stream:
        assert await _take(stream, None) == []
        with pytest.raises(RetriesExhausted):
            await stream.completion.wait()


@pytest.mark.asyncio
async def test_leaving_the_context_is_a_clean_stop():
    store, _ = _store_with_chain(1)

    async with streamer(_config(1), store) as stream:
        await _take(stream, 1)
        # nothing more to stream, discovery keeps polling the tip
        await asyncio.sleep(0.01)
        assert not stream.completion.is_done

    assert await stream.completion.wait() is StopReason.CANCELLED
    assert stream.state is PipelineState.STOPPED
    assert await _take(stream, None) == []


@pytest.mark.asyncio
async def test_nothing_is_listed_or_fetched_once_the_stream_stopped():
    store, _ = _store_with_chain(1, 2)

    async with streamer(_config(1), store) as stream:
        await _take(stream, 2)
        # discovery keeps polling the tip
        await asyncio.sleep(0.01)

    num_listings = len(store.listed_from)
    num_gets = sum(store.get_counts.values())
    await asyncio.sleep(0.05)

    assert len(store.listed_from) == num_listings
    assert sum(store.get_counts.values()) == num_gets


@pytest.mark.asyncio
async def test_fetch_in_flight_when_the_stream_stops_is_dropped():
    store, _ = _store_with_chain(1, 2)
    store.set_latency(block_key(2), 0.05)
    events = []

    async with streamer(_config(1), store, (RecordingContext('recorder', events),)) as stream:
        await _take(stream, 1)
        await asyncio.sleep(0.01)
        assert store.num_gets_in_flight == 1

    # the slow GET was cancelled rather than awaited
    assert store.num_gets_in_flight == 0
    await asyncio.sleep(0.06)

    assert await _take(stream, None) == []
    assert [height for _, _, height in events] == [1, 1]
    assert await stream.completion.wait() is StopReason.CANCELLED


@pytest.mark.asyncio
async def test_aclose_ends_the_iteration():
    store, _ = _store_with_chain(1, 2)

    async with streamer(_config(1), store) as stream:
        await _take(stream, 1)
        await stream.aclose()

        assert await _take(stream, None) == []
        assert await stream.completion.wait() is StopReason.CANCELLED


@pytest.mark.asyncio
async def test_restarts_when_a_block_does_not_follow_the_previous_one():
    store = MemoryObjectStore()
    first, second, third = build_chain((1, 2, 3))
    store.put_messages(BUCKET, (first, third))

    async with streamer(_config(1, continuity_retry_delay=0.02), store) as stream:
        assert (await _take(stream, 1))[0] == first

        # the writer catches up while the stream waits to restart
        asyncio.get_running_loop().call_later(0.01, store.put_message, BUCKET, second)
        delivered = await _take(stream, 2)

    assert delivered == [second, third]
    assert store.listed_from.count(2) >= 1


@pytest.mark.asyncio
async def test_abandoned_fetches_cannot_fail_the_restarted_stream():
    store = MemoryObjectStore()
    first, second, third, fourth = build_chain((1, 2, 3, 4))
    store.put_messages(BUCKET, (first, third))
    # block 4 is still being written, and the first read of it returns garbage
    store.put_object(BUCKET, block_key(4), b'not json yet')
    store.set_latency(block_key(4), 0.03)

    def catch_up():
        store.put_message(BUCKET, second)
        store.put_message(BUCKET, fourth)

    async with streamer(_config(1, continuity_retry_delay=0.06), store) as stream:
        assert (await _take(stream, 1))[0] == first

        # the garbage of block 4 would land while the stream waits to restart
        asyncio.get_running_loop().call_later(0.04, catch_up)
        delivered = await _take(stream, 3)

        assert not stream.completion.is_done

    assert delivered == [second, third, fourth]


@pytest.mark.asyncio
async def test_continuity_check_can_be_disabled():
    store = MemoryObjectStore()
    first, _, third = build_chain((1, 2, 3))
    store.put_messages(BUCKET, (first, third))

    async with streamer(_config(1, verify_continuity=False), store) as stream:
        delivered = await _take(stream, 2)

    assert delivered == [first, third]


@pytest.mark.asyncio
async def test_hooks_run_around_each_delivery():
    store, _ = _store_with_chain(1, 2)
    events = []
    contexts = (RecordingContext('outer', events), RecordingContext('inner', events))

    async with streamer(_config(1), store, contexts) as stream:
        async for message in async_take(2, stream):
            events.append(('consume', None, message.block_height))

    assert events == [
        ('before', 'outer', 1),
        ('before', 'inner', 1),
        ('consume', None, 1),
        ('after', 'inner', 1),
        ('after', 'outer', 1),
        ('before', 'outer', 2),
        ('before', 'inner', 2),
        ('consume', None, 2),
        ('after', 'inner', 2),
        ('after', 'outer', 2),
    ]


@pytest.mark.asyncio
async def test_run_hands_every_block_to_the_handler():
    store, messages = _store_with_chain(1, 2, 4)
    store.put_object(BUCKET, block_key(5), b'[]')
    handled = []

    async def handler(message):
        handled.append(message)

    with pytest.raises(MalformedContent):
        await asyncio.wait_for(run(_config(1), handler, object_store=store), timeout=2)

    assert handled == list(messages)[:len(handled)]


@pytest.mark.asyncio
async def test_failing_before_hook_stops_the_stream():
    store, _ = _store_with_chain(1, 2, 3)
    events = []
    contexts = (RecordingContext('recorder', events), FailingContext(2))

    async with streamer(_config(1), store, contexts) as stream:
        async def pull_three_times():
            outcomes = []
            for _ in range(3):
                try:
                    message = await stream.__anext__()
                except RuntimeError:
                    outcomes.append('hook failed')
                except StopAsyncIteration:
                    outcomes.append('stopped')
                else:
                    outcomes.append(message.block_height)
            return outcomes

        # the block whose hook failed is not skipped over
        assert await asyncio.wait_for(pull_three_times(), timeout=2) == [
            1,
            'hook failed',
            'stopped',
        ]
        assert stream.state is PipelineState.FAILED
        assert stream.last_delivered.block_height == 1

    with pytest.raises(RuntimeError, match="Cannot index #2"):
        await stream.completion.wait()
    assert events == [
        ('before', 'recorder', 1),
        ('after', 'recorder', 1),
        ('before', 'recorder', 2),
    ]


@pytest.mark.asyncio
async def test_run_rejects_a_handler_concurrency_below_one():
    store, _ = _store_with_chain(1)

    async def handler(message):
        pass

    with pytest.raises(ValidationError):
        await run(_config(1), handler, object_store=store, concurrency=0)


@pytest.mark.asyncio
async def test_run_starts_the_next_handler_while_a_slow_one_is_running():
    store, _ = _store_with_chain(1, 2)
    events = []
    second_started = asyncio.Event()

    async def handler(message):
        if message.block_height == 1:
            # only returns once the handler of block 2 got to run
            await second_started.wait()
            events.append(('handled', None, 1))
            raise HandlingDone()
        else:
            second_started.set()
            events.append(('handled', None, 2))

    with pytest.raises(HandlingDone):
        await asyncio.wait_for(
            run(_config(1), handler, (RecordingContext('recorder', events),), store, concurrency=2),
            timeout=2,
        )

    # after-hooks follow their own handler, block 1 failed before getting there
    assert events == [
        ('before', 'recorder', 1),
        ('before', 'recorder', 2),
        ('handled', None, 2),
        ('after', 'recorder', 2),
        ('handled', None, 1),
    ]


@pytest.mark.asyncio
async def test_run_bounds_the_handlers_running_at_once():
    store, _ = _store_with_chain(1, 2, 3, 4, 5)
    running = []
    max_running = 0

    async def handler(message):
        nonlocal max_running
        running.append(message.block_height)
        max_running = max(max_running, len(running))
        await asyncio.sleep(0.01)
        running.remove(message.block_height)
        if message.block_height == 4:
            raise HandlingDone()

    with pytest.raises(HandlingDone):
        await asyncio.wait_for(
            run(_config(1), handler, object_store=store, concurrency=2),
            timeout=2,
        )

    assert max_running == 2
