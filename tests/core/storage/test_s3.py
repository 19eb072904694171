from botocore.exceptions import ClientError
import pytest

from lake.config import LakeConfig
from lake.exceptions import (
    ObjectNotFound,
    StorageError,
    TransientStorageError,
)
from lake.storage import (
    S3ObjectStore,
    classify_client_error,
)
from lake.storage.abc import (
    height_to_prefix,
    prefix_to_height,
)


def _client_error(code, status):
    return ClientError(
        {
            'Error': {'Code': code, 'Message': 'test'},
            'ResponseMetadata': {'HTTPStatusCode': status},
        },
        'GetObject',
    )


@pytest.mark.parametrize(
    'code, status, expected_type',
    (
        ('NoSuchKey', 404, ObjectNotFound),
        ('404', 404, ObjectNotFound),
        ('SlowDown', 503, TransientStorageError),
        ('InternalError', 500, TransientStorageError),
        ('RequestTimeout', 400, TransientStorageError),
        ('SomethingNew', 502, TransientStorageError),
        ('TooManyRequests', 429, TransientStorageError),
        ('AccessDenied', 403, StorageError),
        ('NoSuchBucket', 404, StorageError),
    ),
)
def test_classify_client_error(code, status, expected_type):
    error = classify_client_error(_client_error(code, status), 'bucket', 'key')
    assert type(error) is expected_type


def test_not_found_carries_the_key():
    key = '000000000001/block.json'
    error = classify_client_error(_client_error('NoSuchKey', 404), 'bucket', key)
    assert error.bucket == 'bucket'
    assert error.key == key


@pytest.mark.parametrize(
    'height, prefix',
    (
        (0, '000000000000'),
        (9820210, '000009820210'),
        (999999999999, '999999999999'),
    ),
)
def test_height_prefixes(height, prefix):
    assert height_to_prefix(height) == prefix
    assert prefix_to_height(prefix + '/') == height


@pytest.mark.parametrize('prefix', ('', 'index.html', 'abc/', '/000000000001'))
def test_non_height_prefixes_are_rejected(prefix):
    with pytest.raises(ValueError):
        prefix_to_height(prefix)


def test_zero_padding_keeps_the_listing_order_numeric():
    heights = [5, 40, 100, 9820210]
    assert sorted(map(height_to_prefix, heights)) == list(map(height_to_prefix, heights))


@pytest.mark.asyncio
async def test_store_must_be_opened_before_use():
    store = S3ObjectStore.from_config(LakeConfig.testnet(1))
    with pytest.raises(StorageError):
        await store.get_object('near-lake-data-testnet', '000000000001/block.json')
