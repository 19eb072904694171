import asyncio
import contextlib
import enum
from typing import (
    AsyncIterator,
    Awaitable,
    Callable,
    Iterable,
    List,
    Optional,
)

from async_service import (
    Service,
    background_asyncio_service,
)
from eth_utils import ValidationError

from lake._utils.asyncio_utils import (
    cancel_pending,
    gather_or_cancel,
)
from lake._utils.logging import get_logger
from lake.config import LakeConfig
from lake.context import (
    LakeContextAPI,
    LakeContextGroup,
)
from lake.exceptions import (
    PipelineStateError,
    PreloadPoolClosed,
)
from lake.storage.abc import ObjectStoreAPI
from lake.storage.s3 import S3ObjectStore
from lake.streamer.completion import (
    LakeCompletion,
    StopReason,
)
from lake.streamer.fetchers import BlockFetcher
from lake.streamer.heights import stream_block_heights
from lake.streamer.pool import PreloadPool
from lake.typing import (
    BlockHeight,
    StreamerMessage,
)


class PipelineState(enum.Enum):
    STARTING = 'starting'
    STREAMING = 'streaming'
    DRAINING = 'draining'
    FAILED = 'failed'
    STOPPED = 'stopped'


_ALLOWED_TRANSITIONS = {
    PipelineState.STARTING: {PipelineState.STREAMING, PipelineState.DRAINING, PipelineState.FAILED},
    PipelineState.STREAMING: {PipelineState.DRAINING, PipelineState.FAILED},
    PipelineState.DRAINING: {PipelineState.STOPPED},
    PipelineState.FAILED: set(),
    PipelineState.STOPPED: set(),
}


FailureHandler = Callable[[BaseException], None]


class BlockPrefetcher(Service):
    """
    Discover the heights from ``start_block_height`` on and fetch them into a
    :class:`~lake.streamer.pool.PreloadPool` of its own, at most ``blocks_preload_pool_size``
    heights ahead of the consumer.

    A height is only admitted once it holds a slot in the pool, so discovery (and with it
    the LIST requests) pauses while the pool is full. Each admitted height is fetched in a
    task of its own.

    Nothing raised in here escapes the service: every error is handed to ``on_failure``.
    """
    logger = get_logger('lake.streamer.service.BlockPrefetcher')

    def __init__(self,
                 object_store: ObjectStoreAPI,
                 fetcher: BlockFetcher,
                 config: LakeConfig,
                 start_block_height: BlockHeight,
                 on_failure: FailureHandler) -> None:
        self._object_store = object_store
        self._fetcher = fetcher
        self._config = config
        self.start_block_height = start_block_height
        self._on_failure = on_failure
        self.pool = PreloadPool(config.blocks_preload_pool_size)

    async def run(self) -> None:
        self.logger.debug("Prefetching blocks from #%d", self.start_block_height)
        try:
            await self._admit_heights()
        except PreloadPoolClosed:
            self.logger.debug("Preload pool closed, no more heights are admitted")
        except Exception as err:
            self._on_failure(err)
        finally:
            self.pool.close()

    async def _admit_heights(self) -> None:
        heights = stream_block_heights(
            self._object_store,
            self._config.s3_bucket_name,
            self.start_block_height,
            self._config.list_page_size,
            self._config.tip_poll_interval,
            self._config.list_retry_policy,
        )
        async for height in heights:
            await self.pool.reserve(height)
            self.manager.run_task(self._fetch_into_pool, height, name=f"fetch#{height}")

    async def _fetch_into_pool(self, height: BlockHeight) -> None:
        try:
            message = await self._fetcher.fetch_streamer_message(height)
        except Exception as err:
            self._on_failure(err)
        else:
            self.logger.debug2("Fetched %s", message)
            self.pool.submit(height, message)

    def __str__(self) -> str:
        return f"BlockPrefetcher(from #{self.start_block_height}, {self.pool})"


class LakeStreamer(Service):
    """
    Own the streaming pipeline: its state, its completion handle and the current
    :class:`BlockPrefetcher`.

    The prefetcher can be replaced by a fresh one starting at another height, which drops
    every block the old one fetched (see :meth:`restart_from`).

    The service itself never fails: the first fatal error is recorded in :attr:`completion`,
    the pool is closed so the consumer stops receiving blocks, and the service cancels
    itself. A cancelled service resolves the completion as
    :attr:`~lake.streamer.completion.StopReason.CANCELLED`.
    """
    logger = get_logger('lake.streamer.service.LakeStreamer')

    def __init__(self, config: LakeConfig, object_store: ObjectStoreAPI) -> None:
        self.config = config
        self._object_store = object_store
        self._fetcher = BlockFetcher.from_config(object_store, config)
        self.completion = LakeCompletion()
        self._state = PipelineState.STARTING
        self._prefetcher = self._new_prefetcher(config.start_block_height)
        self.num_restarts = 0

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def pool(self) -> PreloadPool:
        return self._prefetcher.pool

    async def run(self) -> None:
        self._set_state(PipelineState.STREAMING)
        self.logger.info(
            "Streaming blocks from #%d of %s",
            self.config.start_block_height,
            self.config.s3_bucket_name,
        )
        try:
            self.manager.run_child_service(self._prefetcher)
            # run until cancelled
            await self.manager.wait_finished()
        finally:
            self._drain()

    def fail(self, error: BaseException) -> None:
        """
        Stop the pipeline because of ``error``. Only the first error is kept; the ones that
        follow are logged and ignored.
        """
        if not self.completion.set_error(error):
            return

        self.logger.error("Block streamer failed: %r", error)
        if PipelineState.FAILED in _ALLOWED_TRANSITIONS[self._state]:
            self._set_state(PipelineState.FAILED)
        self.pool.close()
        self.manager.cancel()

    def cancel(self) -> None:
        """
        Stop delivering blocks right away and cancel the pipeline.
        """
        self.pool.close()
        self.manager.cancel()

    async def restart_from(self, height: BlockHeight, delay: float) -> None:
        """
        Stop the current prefetcher, wait ``delay`` seconds, then replace it with one that
        starts at ``height``. Everything the old one discovered or fetched is dropped.
        """
        self.logger.warning("Restarting the block stream from #%d in %.2fs", height, delay)
        old_prefetcher = self._prefetcher
        old_prefetcher.pool.close()
        # abandoned fetches must not fail the pipeline
        old_manager = old_prefetcher.get_manager()
        old_manager.cancel()
        await old_manager.wait_finished()

        await asyncio.sleep(delay)
        if self._state is not PipelineState.STREAMING or not self.manager.is_running:
            self.logger.debug("Not restarting the block stream, it is %s", self._state.value)
            return

        self.num_restarts += 1
        self._prefetcher = self._new_prefetcher(height)
        self.manager.run_child_service(self._prefetcher)

    def _new_prefetcher(self, start_block_height: BlockHeight) -> BlockPrefetcher:
        return BlockPrefetcher(
            self._object_store,
            self._fetcher,
            self.config,
            start_block_height,
            self.fail,
        )

    def ensure_stopped(self) -> None:
        """
        Resolve the completion of a pipeline that was shut down, even one that was
        cancelled before it got to run.
        """
        self._drain()

    def _drain(self) -> None:
        if self._state in (PipelineState.FAILED, PipelineState.STOPPED):
            self.pool.close()
            return

        self._set_state(PipelineState.DRAINING)
        self.pool.close()
        self.completion.set_cancelled()
        self._set_state(PipelineState.STOPPED)
        self.logger.info("Block streamer stopped")

    def _set_state(self, new_state: PipelineState) -> None:
        if new_state not in _ALLOWED_TRANSITIONS[self._state]:
            raise PipelineStateError(
                f"Block streamer cannot go from {self._state.value} to {new_state.value}"
            )
        self.logger.debug("Block streamer: %s -> %s", self._state.value, new_state.value)
        self._state = new_state


class BlockStream:
    """
    The consumer's end of the pipeline: an async iterator over the
    :class:`~lake.typing.StreamerMessage` of every existing height, in ascending order.

    Iteration ends when the pipeline stops, either cancelled or failed; :attr:`completion`
    tells which. The stream cannot be restarted.

    When ``verify_continuity`` is configured, a block whose ``prev_hash`` is not the hash
    of the previously delivered block is withheld, and streaming restarts from the height
    right after the last delivered one. This covers the lake writer uploading a block
    before the one preceding it.
    """
    logger = get_logger('lake.streamer.service.BlockStream')

    def __init__(self, lake_streamer: LakeStreamer, context: LakeContextAPI = None) -> None:
        self._streamer = lake_streamer
        if context is None:
            context = LakeContextGroup(())
        self._context = context
        self._last_delivered: Optional[StreamerMessage] = None
        self._awaiting_after_hooks: Optional[StreamerMessage] = None

    @property
    def completion(self) -> LakeCompletion:
        return self._streamer.completion

    @property
    def state(self) -> PipelineState:
        return self._streamer.state

    @property
    def last_delivered(self) -> Optional[StreamerMessage]:
        return self._last_delivered

    def __aiter__(self) -> 'BlockStream':
        return self

    async def __anext__(self) -> StreamerMessage:
        self._run_after_hooks()
        message = await self.receive()
        self._awaiting_after_hooks = message
        return message

    async def receive(self) -> StreamerMessage:
        """
        Return the next message once its before-hooks ran, leaving its after-hooks to
        :meth:`finish`. Raises ``StopAsyncIteration`` once the pipeline stopped.

        A failing hook is a fatal pipeline error: it is raised here and recorded in
        :attr:`completion`, and no message is delivered after it.
        """
        while True:
            pool = self._streamer.pool
            try:
                message = await pool.next_blocking()
            except PreloadPoolClosed:
                if self._streamer.pool is not pool:
                    # the prefetcher was replaced while we were waiting on the old one
                    continue
                raise StopAsyncIteration

            if self._last_delivered is None or self._follows(self._last_delivered, message):
                break

            await self._streamer.restart_from(
                BlockHeight(self._last_delivered.block_height + 1),
                self._streamer.config.continuity_retry_delay,
            )

        self._run_hook(self._context.before_delivery, message)
        self._last_delivered = message
        return message

    def finish(self, message: StreamerMessage) -> None:
        """
        Run the after-hooks of a message returned by :meth:`receive`.
        """
        self._run_hook(self._context.after_delivery, message)

    def cancel(self) -> None:
        self._streamer.cancel()

    async def aclose(self) -> None:
        """
        Run the remaining hooks, then cancel the pipeline and wait for it to stop.
        """
        try:
            self._run_after_hooks()
        finally:
            self._streamer.cancel()
            await self._streamer.manager.wait_finished()

    def _follows(self, previous: StreamerMessage, message: StreamerMessage) -> bool:
        if not self._streamer.config.verify_continuity:
            return True
        elif message.prev_block_hash == previous.block_hash:
            return True
        else:
            self.logger.warning(
                "Block #%d (%s) does not follow #%d (%s), its prev_hash is %s",
                message.block_height,
                message.block_hash,
                previous.block_height,
                previous.block_hash,
                message.prev_block_hash,
            )
            return False

    def _run_after_hooks(self) -> None:
        message, self._awaiting_after_hooks = self._awaiting_after_hooks, None
        if message is not None:
            self.finish(message)

    def _run_hook(self, hook: Callable[[StreamerMessage], None],
                  message: StreamerMessage) -> None:
        try:
            hook(message)
        except Exception as err:
            self._streamer.fail(err)
            raise

    def __repr__(self) -> str:
        if self._last_delivered is None:
            return f"BlockStream({self.state.value})"
        else:
            return f"BlockStream({self.state.value}, last=#{self._last_delivered.block_height})"


@contextlib.asynccontextmanager
async def streamer(config: LakeConfig,
                   object_store: ObjectStoreAPI = None,
                   contexts: Iterable[LakeContextAPI] = ()) -> AsyncIterator[BlockStream]:
    """
    Start streaming blocks as configured and yield the :class:`BlockStream` to read them
    from. Leaving the context cancels the pipeline and waits for it to stop.

    Without an ``object_store``, an :class:`~lake.storage.s3.S3ObjectStore` is opened for
    the configured region and endpoint.

    ::

        async with streamer(LakeConfig.mainnet(start_block_height=9820210)) as stream:
            async for message in stream:
                print(message.block_height)
    """
    async with contextlib.AsyncExitStack() as stack:
        if object_store is None:
            object_store = await stack.enter_async_context(S3ObjectStore.from_config(config))

        lake_streamer = LakeStreamer(config, object_store)
        stack.callback(lake_streamer.ensure_stopped)
        await stack.enter_async_context(background_asyncio_service(lake_streamer))

        stream = BlockStream(lake_streamer, LakeContextGroup(contexts))
        yield stream
        await stream.aclose()


async def run(config: LakeConfig,
              handler: Callable[[StreamerMessage], Awaitable[None]],
              contexts: Iterable[LakeContextAPI] = (),
              object_store: ObjectStoreAPI = None,
              concurrency: int = 1) -> StopReason:
    """
    Await ``handler`` on every block until the pipeline stops. Returns the reason it
    stopped, or raises the error it failed with.

    Up to ``concurrency`` handlers run at once. They are started in height order but may
    return in any order, and the after-hooks of a block run as soon as its handler returned.
    The first handler error cancels the other handlers and the pipeline, and is raised.
    """
    if concurrency < 1:
        raise ValidationError(f"Handler concurrency must be at least 1, got {concurrency}")

    async with streamer(config, object_store, contexts) as stream:
        if concurrency == 1:
            async for message in stream:
                await handler(message)
        else:
            await _handle_concurrently(stream, handler, concurrency)
        return await stream.completion.wait()


async def _handle_concurrently(stream: BlockStream,
                               handler: Callable[[StreamerMessage], Awaitable[None]],
                               concurrency: int) -> None:
    handler_slots = asyncio.BoundedSemaphore(concurrency)
    handlers: List['asyncio.Future[None]'] = []

    async def _handle(message: StreamerMessage) -> None:
        try:
            await handler(message)
            stream.finish(message)
        except Exception:
            # stop receiving, the error is raised when the handlers are gathered
            stream.cancel()
            raise
        finally:
            handler_slots.release()

    try:
        while True:
            await handler_slots.acquire()
            try:
                message = await stream.receive()
            except StopAsyncIteration:
                break
            handlers = [task for task in handlers if not _has_succeeded(task)]
            handlers.append(asyncio.ensure_future(_handle(message)))
    except BaseException:
        await cancel_pending(handlers)
        raise

    await gather_or_cancel(*handlers)


def _has_succeeded(task: 'asyncio.Future[None]') -> bool:
    return task.done() and not task.cancelled() and task.exception() is None
