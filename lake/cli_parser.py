import argparse
import logging

from eth_utils import DEBUG2_LEVEL_NUM

from lake import __version__
from lake.constants import (
    DEFAULT_FETCH_CONCURRENCY,
    DEFAULT_PRELOAD_POOL_SIZE,
    NETWORK_BUCKETS,
)


LOG_LEVEL_CHOICES = {
    'DEBUG2': DEBUG2_LEVEL_NUM,
    'DEBUG': logging.DEBUG,
    'INFO': logging.INFO,
    'WARNING': logging.WARNING,
    'ERROR': logging.ERROR,
}


def log_level(value: str) -> int:
    try:
        return LOG_LEVEL_CHOICES[value.upper()]
    except KeyError:
        raise argparse.ArgumentTypeError(
            f"Unknown log level {value!r}, expected one of {', '.join(LOG_LEVEL_CHOICES)}"
        )


parser = argparse.ArgumentParser(
    prog='lake',
    description="Print the blocks of a NEAR Lake bucket, in order, as they are streamed",
)

parser.add_argument(
    '--version',
    action='version',
    version=__version__,
)

#
# Source
#
source_parser = parser.add_argument_group('source')
source_parser.add_argument(
    '--network',
    choices=sorted(NETWORK_BUCKETS),
    default='mainnet',
    help="Stream from the public lake bucket of this network (default: %(default)s)",
)
source_parser.add_argument(
    '--bucket',
    help="Stream from this bucket instead of a public one, requires --region",
)
source_parser.add_argument(
    '--region',
    help="Region of --bucket",
)
source_parser.add_argument(
    '--endpoint-url',
    help="Endpoint of a custom S3-compatible storage",
)
source_parser.add_argument(
    '--start-block-height',
    type=int,
    required=True,
    help="First block height to stream, the first existing block at or after it is printed first",
)

#
# Streaming
#
streaming_parser = parser.add_argument_group('streaming')
streaming_parser.add_argument(
    '--preload-pool-size',
    type=int,
    default=DEFAULT_PRELOAD_POOL_SIZE,
    help="How many blocks may be fetched ahead of the printer (default: %(default)s)",
)
streaming_parser.add_argument(
    '--fetch-concurrency',
    type=int,
    default=DEFAULT_FETCH_CONCURRENCY,
    help="How many objects may be downloaded at once (default: %(default)s)",
)
streaming_parser.add_argument(
    '--skip-continuity-check',
    action='store_true',
    help="Do not check that each block's prev_hash is the hash of the block before it",
)
streaming_parser.add_argument(
    '--limit',
    type=int,
    help="Stop after printing this many blocks",
)

#
# Logging
#
logging_parser = parser.add_argument_group('logging')
logging_parser.add_argument(
    '-l',
    '--log-level',
    type=log_level,
    default=logging.INFO,
    help="Log level for the streamer's own logs: DEBUG2, DEBUG, INFO, WARNING or ERROR",
)
