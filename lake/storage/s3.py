import asyncio
from types import TracebackType
from typing import (
    Any,
    List,
    Optional,
    Tuple,
    Type,
)

import aioboto3
from botocore.config import Config
from botocore.exceptions import (
    ClientError,
    ConnectionError as BotoConnectionError,
    HTTPClientError,
)

from lake._utils.logging import get_logger
from lake.config import LakeConfig
from lake.exceptions import (
    ObjectNotFound,
    StorageError,
    TransientStorageError,
)
from lake.storage.abc import (
    ObjectStoreAPI,
    height_to_prefix,
    prefix_to_height,
)
from lake.typing import BlockHeight


NOT_FOUND_CODES = frozenset(('404', 'NoSuchKey', 'NotFound'))

# Error codes S3 (and the S3-compatible stores) use for conditions that go away on their own
TRANSIENT_CODES = frozenset((
    'InternalError',
    'RequestTimeout',
    'RequestTimeTooSkewed',
    'ServiceUnavailable',
    'SlowDown',
    'Throttling',
    'ThrottlingException',
    'TooManyRequests',
    'TooManyRequestsException',
    '500',
    '502',
    '503',
    '504',
))


def classify_client_error(err: ClientError, bucket: str, key: str) -> StorageError:
    """
    Map a botocore ``ClientError`` onto the lake storage error taxonomy.
    """
    error = err.response.get('Error', {})
    code = str(error.get('Code', ''))
    status = err.response.get('ResponseMetadata', {}).get('HTTPStatusCode', 0)

    if code in NOT_FOUND_CODES:
        return ObjectNotFound(bucket, key)
    elif code in TRANSIENT_CODES or status == 429 or status >= 500:
        return TransientStorageError(f"{code or status} while reading {key} from {bucket}: {err}")
    else:
        return StorageError(f"{code or status} while reading {key} from {bucket}: {err}")


class S3ObjectStore(ObjectStoreAPI):
    """
    :class:`~lake.storage.abc.ObjectStoreAPI` on top of an aioboto3 S3 client.

    The lake buckets are "requester pays", so every request carries
    ``RequestPayer='requester'``. Credentials come from the AWS default chain (environment,
    shared credentials file, instance profile).

    Use as an async context manager; the underlying client lives as long as the context::

        async with S3ObjectStore.from_config(config) as store:
            heights = await store.list_block_heights(config.s3_bucket_name, 100, 10)
    """
    logger = get_logger('lake.storage.s3.S3ObjectStore')

    _client: Any = None

    def __init__(self,
                 region_name: str,
                 endpoint_url: str = None,
                 max_pool_connections: int = 50) -> None:
        self._region_name = region_name
        self._endpoint_url = endpoint_url
        # retries are handled by the streamer
        self._boto_config = Config(
            max_pool_connections=max_pool_connections,
            connect_timeout=5,
            read_timeout=60,
            retries={'max_attempts': 1, 'mode': 'standard'},
        )
        self._client_context: Any = None

    @classmethod
    def from_config(cls, config: LakeConfig) -> 'S3ObjectStore':
        # One pooled connection per concurrent GET, plus one for the listing
        return cls(
            config.s3_region_name,
            endpoint_url=config.s3_endpoint_url,
            max_pool_connections=config.fetch_concurrency + 1,
        )

    async def __aenter__(self) -> 'S3ObjectStore':
        session = aioboto3.Session(region_name=self._region_name)
        self._client_context = session.client(
            's3',
            endpoint_url=self._endpoint_url,
            config=self._boto_config,
        )
        self._client = await self._client_context.__aenter__()
        self.logger.debug("Opened S3 client for region %s", self._region_name)
        return self

    async def __aexit__(self,
                        exc_type: Optional[Type[BaseException]],
                        exc_value: Optional[BaseException],
                        traceback: Optional[TracebackType]) -> None:
        client_context, self._client_context, self._client = self._client_context, None, None
        if client_context is not None:
            await client_context.__aexit__(exc_type, exc_value, traceback)

    def _require_client(self) -> Any:
        if self._client is None:
            raise StorageError("S3 client is not open, use `async with S3ObjectStore(...)`")
        return self._client

    async def list_block_heights(self,
                                 bucket: str,
                                 start_from: BlockHeight,
                                 limit: int) -> Tuple[BlockHeight, ...]:
        client = self._require_client()
        # `StartAfter` is exclusive, but the bare zero padded height sorts right before its
        # own directory prefix, e.g. "000000000100" < "000000000100/", so the start height
        # itself is included.
        start_after = height_to_prefix(start_from)
        try:
            response = await client.list_objects_v2(
                Bucket=bucket,
                Delimiter='/',
                StartAfter=start_after,
                MaxKeys=limit,
                RequestPayer='requester',
            )
        except ClientError as err:
            raise classify_client_error(err, bucket, start_after) from err
        except (BotoConnectionError, HTTPClientError, asyncio.TimeoutError) as err:
            raise TransientStorageError(
                f"Listing {bucket} after {start_after} failed: {err}"
            ) from err

        heights: List[BlockHeight] = []
        for common_prefix in response.get('CommonPrefixes', ()):
            try:
                heights.append(prefix_to_height(common_prefix['Prefix']))
            except (KeyError, ValueError):
                self.logger.debug("Ignoring unexpected prefix in %s: %r", bucket, common_prefix)
        return tuple(sorted(heights))

    async def get_object(self, bucket: str, key: str) -> bytes:
        client = self._require_client()
        try:
            response = await client.get_object(
                Bucket=bucket,
                Key=key,
                RequestPayer='requester',
            )
            async with response['Body'] as body:
                return await body.read()
        except ClientError as err:
            raise classify_client_error(err, bucket, key) from err
        except (BotoConnectionError, HTTPClientError, asyncio.TimeoutError) as err:
            raise TransientStorageError(f"Reading {key} from {bucket} failed: {err}") from err
