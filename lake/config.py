import argparse
from typing import (
    Any,
    Optional,
)

from eth_utils import ValidationError

from lake.constants import (
    DEFAULT_CONTINUITY_RETRY_DELAY,
    DEFAULT_FETCH_CONCURRENCY,
    DEFAULT_FETCH_MAX_ATTEMPTS,
    DEFAULT_LIST_MAX_ATTEMPTS,
    DEFAULT_LIST_PAGE_SIZE,
    DEFAULT_NOT_FOUND_RETRY_DELAY,
    DEFAULT_PRELOAD_POOL_SIZE,
    DEFAULT_RETRY_INITIAL_DELAY,
    DEFAULT_RETRY_MAX_DELAY,
    DEFAULT_TIP_POLL_INTERVAL,
    NETWORK_BUCKETS,
)
from lake.typing import BlockHeight


class RetryPolicy:
    """
    Bounded exponential backoff: the n-th retry (counting from zero) waits
    ``min(initial_delay * 2 ** n, max_delay)`` seconds.
    """
    def __init__(self,
                 max_attempts: int,
                 initial_delay: float = DEFAULT_RETRY_INITIAL_DELAY,
                 max_delay: float = DEFAULT_RETRY_MAX_DELAY) -> None:
        if max_attempts < 1:
            raise ValidationError(f"A retry policy needs at least one attempt, got {max_attempts}")
        if initial_delay < 0 or max_delay < initial_delay:
            raise ValidationError(
                f"Invalid backoff delays: initial={initial_delay}, max={max_delay}"
            )
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay

    def backoff(self, attempt: int) -> float:
        return min(self.initial_delay * 2 ** attempt, self.max_delay)

    def __repr__(self) -> str:
        return (
            f"RetryPolicy(max_attempts={self.max_attempts}, "
            f"initial_delay={self.initial_delay}, max_delay={self.max_delay})"
        )


class LakeConfig:
    """
    Everything the streamer needs to know: where the blocks live, where to start and how
    aggressively to prefetch.

    Use one of :meth:`mainnet`, :meth:`testnet` or :meth:`betanet` to stream from the public
    buckets, or pass ``s3_bucket_name``, ``s3_region_name`` and optionally ``s3_endpoint_url``
    to read from a custom S3-compatible storage.
    """
    def __init__(self,
                 s3_bucket_name: str,
                 s3_region_name: str,
                 start_block_height: int,
                 s3_endpoint_url: str = None,
                 blocks_preload_pool_size: int = DEFAULT_PRELOAD_POOL_SIZE,
                 fetch_concurrency: int = DEFAULT_FETCH_CONCURRENCY,
                 list_page_size: int = DEFAULT_LIST_PAGE_SIZE,
                 tip_poll_interval: float = DEFAULT_TIP_POLL_INTERVAL,
                 list_max_attempts: int = DEFAULT_LIST_MAX_ATTEMPTS,
                 fetch_max_attempts: int = DEFAULT_FETCH_MAX_ATTEMPTS,
                 retry_initial_delay: float = DEFAULT_RETRY_INITIAL_DELAY,
                 retry_max_delay: float = DEFAULT_RETRY_MAX_DELAY,
                 not_found_retry_delay: float = DEFAULT_NOT_FOUND_RETRY_DELAY,
                 not_found_max_attempts: int = None,
                 shard_count: int = None,
                 verify_continuity: bool = True,
                 continuity_retry_delay: float = DEFAULT_CONTINUITY_RETRY_DELAY) -> None:
        if not s3_bucket_name:
            raise ValidationError("An S3 bucket name is required")
        if start_block_height < 0:
            raise ValidationError(
                f"Block heights are unsigned, got start height {start_block_height}"
            )
        _require_positive('blocks_preload_pool_size', blocks_preload_pool_size)
        _require_positive('fetch_concurrency', fetch_concurrency)
        _require_positive('list_page_size', list_page_size)
        if tip_poll_interval < 0 or not_found_retry_delay < 0 or continuity_retry_delay < 0:
            raise ValidationError("Delays must not be negative")
        if not_found_max_attempts is not None:
            _require_positive('not_found_max_attempts', not_found_max_attempts)
        if shard_count is not None and shard_count < 0:
            raise ValidationError(f"shard_count must not be negative, got {shard_count}")

        self.s3_bucket_name = s3_bucket_name
        self.s3_region_name = s3_region_name
        self.s3_endpoint_url = s3_endpoint_url
        self.start_block_height = BlockHeight(start_block_height)
        self.blocks_preload_pool_size = blocks_preload_pool_size
        self.fetch_concurrency = fetch_concurrency
        self.list_page_size = list_page_size
        self.tip_poll_interval = tip_poll_interval
        self.not_found_retry_delay = not_found_retry_delay
        self.not_found_max_attempts = not_found_max_attempts
        self.shard_count = shard_count
        self.verify_continuity = verify_continuity
        self.continuity_retry_delay = continuity_retry_delay

        self.list_retry_policy = RetryPolicy(
            list_max_attempts,
            retry_initial_delay,
            retry_max_delay,
        )
        self.fetch_retry_policy = RetryPolicy(
            fetch_max_attempts,
            retry_initial_delay,
            retry_max_delay,
        )

    @classmethod
    def for_network(cls, network: str, start_block_height: int, **kwargs: Any) -> 'LakeConfig':
        """
        Build a config for one of the public lake buckets: ``mainnet``, ``testnet`` or
        ``betanet``.
        """
        try:
            bucket, region = NETWORK_BUCKETS[network]
        except KeyError:
            raise ValidationError(
                f"Unknown network {network!r}, expected one of {sorted(NETWORK_BUCKETS)}"
            )
        return cls(bucket, region, start_block_height, **kwargs)

    @classmethod
    def mainnet(cls, start_block_height: int, **kwargs: Any) -> 'LakeConfig':
        return cls.for_network('mainnet', start_block_height, **kwargs)

    @classmethod
    def testnet(cls, start_block_height: int, **kwargs: Any) -> 'LakeConfig':
        return cls.for_network('testnet', start_block_height, **kwargs)

    @classmethod
    def betanet(cls, start_block_height: int, **kwargs: Any) -> 'LakeConfig':
        return cls.for_network('betanet', start_block_height, **kwargs)

    @classmethod
    def from_parser_args(cls, parser_args: argparse.Namespace) -> 'LakeConfig':
        """
        Initialize a :class:`~lake.config.LakeConfig` from the namespace object produced by
        the ``lake`` command line parser.
        """
        tuning = dict(
            s3_endpoint_url=parser_args.endpoint_url,
            blocks_preload_pool_size=parser_args.preload_pool_size,
            fetch_concurrency=parser_args.fetch_concurrency,
            verify_continuity=not parser_args.skip_continuity_check,
        )
        if parser_args.bucket is not None:
            if parser_args.region is None:
                raise ValidationError("--region is required together with --bucket")
            return cls(
                parser_args.bucket,
                parser_args.region,
                parser_args.start_block_height,
                **tuning,
            )
        else:
            return cls.for_network(parser_args.network, parser_args.start_block_height, **tuning)

    def __repr__(self) -> str:
        return (
            f"LakeConfig(bucket={self.s3_bucket_name}, region={self.s3_region_name}, "
            f"start={self.start_block_height}, preload={self.blocks_preload_pool_size}, "
            f"concurrency={self.fetch_concurrency})"
        )


def _require_positive(name: str, value: Optional[int]) -> None:
    if value is None or value < 1:
        raise ValidationError(f"{name} must be a positive integer, got {value}")
