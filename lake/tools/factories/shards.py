try:
    import factory
except ImportError:
    raise ImportError("The lake.tools.factories module requires the `factory_boy` library.")

from .blocks import CryptoHashFactory


class ExecutionOutcomeFactory(factory.DictFactory):
    id = factory.SubFactory(CryptoHashFactory)
    outcome = factory.Dict({
        'executor_id': 'test.near',
        'logs': factory.List([]),
        'receipt_ids': factory.List([]),
        'status': factory.Dict({'SuccessValue': ''}),
    })


class TransactionWithOutcomeFactory(factory.DictFactory):
    """
    A transaction included in a chunk. ``receipt_id`` is the receipt it was converted into.
    """
    class Params:
        receipt_id = factory.SubFactory(CryptoHashFactory)

    transaction = factory.Dict({
        'hash': factory.SubFactory(CryptoHashFactory),
        'signer_id': 'alice.near',
        'receiver_id': 'bob.near',
        'actions': factory.List([]),
    })
    outcome = factory.LazyAttribute(lambda tx: {
        'execution_outcome': ExecutionOutcomeFactory(
            outcome__receipt_ids=[tx.receipt_id],
        ),
        'receipt': None,
    })


class ReceiptViewFactory(factory.DictFactory):
    receipt_id = factory.SubFactory(CryptoHashFactory)
    receiver_id = 'bob.near'
    predecessor_id = 'alice.near'
    receipt = factory.Dict({'Action': factory.Dict({'actions': factory.List([])})})


class ReceiptExecutionOutcomeFactory(factory.DictFactory):
    """
    A receipt executed in a shard. ``produced_receipt_ids`` are the receipts its execution
    created.
    """
    class Params:
        produced_receipt_ids = ()

    receipt = factory.SubFactory(ReceiptViewFactory)
    execution_outcome = factory.LazyAttribute(
        lambda outcome: ExecutionOutcomeFactory(
            outcome__receipt_ids=list(outcome.produced_receipt_ids),
        )
    )


class ChunkViewFactory(factory.DictFactory):
    author = 'validator.near'
    header = factory.Dict({'shard_id': 0, 'chunk_hash': factory.SubFactory(CryptoHashFactory)})
    transactions = factory.List([])
    receipts = factory.List([])


class ShardViewFactory(factory.DictFactory):
    """
    A decoded ``shard_N.json``.
    """
    shard_id = 0
    chunk = factory.LazyAttribute(
        lambda shard: ChunkViewFactory(header__shard_id=shard.shard_id)
    )
    receipt_execution_outcomes = factory.List([])
    state_changes = factory.List([])
