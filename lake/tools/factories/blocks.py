try:
    import factory
except ImportError:
    raise ImportError("The lake.tools.factories module requires the `factory_boy` library.")


class CryptoHashFactory(factory.Factory):
    """
    A random 32 byte hash, hex encoded. Real hashes are base58 encoded, the streamer
    only ever compares them.
    """
    class Meta:
        model = str

    value = factory.Faker('sha256')

    @classmethod
    def _create(cls, model_class: type, *args: str, **kwargs: str) -> str:
        return model_class(kwargs['value'])


class BlockHeaderViewFactory(factory.DictFactory):
    height = factory.Sequence(lambda n: n)
    hash = factory.SubFactory(CryptoHashFactory)
    prev_hash = factory.SubFactory(CryptoHashFactory)
    epoch_id = factory.SubFactory(CryptoHashFactory)
    timestamp_nanosec = factory.Faker(
        'pyint',
        min_value=1_600_000_000 * 10**9,
        max_value=1_700_000_000 * 10**9,
    )
    gas_price = "100000000"
    chunks_included = 1


class ChunkHeaderViewFactory(factory.DictFactory):
    shard_id = 0
    chunk_hash = factory.SubFactory(CryptoHashFactory)
    height_included = 0


class BlockViewFactory(factory.DictFactory):
    """
    A decoded ``block.json``. Pass ``shard_count`` to get one chunk per shard.
    """
    class Params:
        shard_count = 1

    author = 'test.near'
    header = factory.SubFactory(BlockHeaderViewFactory)
    chunks = factory.LazyAttribute(lambda block: [
        ChunkHeaderViewFactory(shard_id=shard_id) for shard_id in range(block.shard_count)
    ])
