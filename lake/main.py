import asyncio
import logging
import sys
from typing import Sequence

from eth_utils import ValidationError

from lake._utils.async_iter import async_take
from lake._utils.logging import (
    get_logger,
    setup_lake_stderr_logging,
    setup_log_levels,
)
from lake.cli_parser import parser
from lake.config import LakeConfig
from lake.exceptions import BaseLakeError
from lake.streamer import streamer
from lake.typing import StreamerMessage


def format_message(message: StreamerMessage) -> str:
    return f"#{message.block_height}  {message.block_hash}  shards={len(message.shards)}"


async def print_blocks(config: LakeConfig, limit: int = None) -> None:
    logger = get_logger('lake.main.print_blocks')

    async with streamer(config) as stream:
        async for message in async_take(limit, stream):
            print(format_message(message), flush=True)

        if not stream.completion.is_done:
            logger.info("Printed %d blocks, stopping", limit)
            return

        # the stream only ends on its own when the pipeline failed
        await stream.completion.wait()


def main(argv: Sequence[str] = None) -> None:
    args = parser.parse_args(argv)

    setup_lake_stderr_logging(logging.WARNING)
    setup_log_levels({'lake': args.log_level})
    logger = get_logger('lake.main')

    try:
        config = LakeConfig.from_parser_args(args)
    except ValidationError as err:
        parser.error(str(err))

    try:
        asyncio.run(print_blocks(config, args.limit))
    except KeyboardInterrupt:
        logger.info("Interrupted, stopping")
    except BaseLakeError as err:
        logger.error("Streaming stopped: %s", err)
        sys.exit(1)


if __name__ == '__main__':
    main()
