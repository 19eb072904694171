from lake.primitives import Block
from lake.tools.factories import (
    BlockViewFactory,
    ChunkViewFactory,
    ReceiptExecutionOutcomeFactory,
    ReceiptViewFactory,
    ShardViewFactory,
    StreamerMessageFactory,
    TransactionWithOutcomeFactory,
)
from lake.typing import StreamerMessage


def _message(*shards, height=10):
    return StreamerMessage(
        BlockViewFactory(header__height=height, shard_count=len(shards)),
        tuple(shards),
    )


def test_header():
    message = StreamerMessageFactory(height=12)
    header = Block(message).header()

    assert header.height == 12
    assert header.hash == message.block_hash
    assert header.prev_hash == message.prev_block_hash
    assert header.author == 'test.near'
    assert header.gas_price == 100000000
    assert isinstance(header.timestamp_nanosec, int)


def test_transactions_from_every_chunk():
    message = _message(
        ShardViewFactory(shard_id=0, chunk=ChunkViewFactory(transactions=[
            TransactionWithOutcomeFactory(transaction__hash='tx-a', receipt_id='r-a'),
        ])),
        ShardViewFactory(shard_id=1, chunk=None),
        ShardViewFactory(shard_id=2, chunk=ChunkViewFactory(transactions=[
            TransactionWithOutcomeFactory(
                transaction__hash='tx-b',
                transaction__signer_id='carol.near',
                receipt_id='r-b',
            ),
        ])),
    )

    transactions = Block(message).transactions()

    assert [tx.transaction_hash for tx in transactions] == ['tx-a', 'tx-b']
    assert transactions[0].receipt_ids == ('r-a',)
    assert transactions[1].signer_id == 'carol.near'
    assert transactions[1].receiver_id == 'bob.near'


def test_executed_and_postponed_receipts():
    message = _message(ShardViewFactory(
        chunk=ChunkViewFactory(receipts=[ReceiptViewFactory(receipt_id='later')]),
        receipt_execution_outcomes=[
            ReceiptExecutionOutcomeFactory(
                receipt__receipt_id='now',
                produced_receipt_ids=('child-1', 'child-2'),
            ),
        ],
    ))
    block = Block(message)

    executed, = block.receipts()
    assert executed.receipt_id == 'now'
    assert executed.produced_receipt_ids == ('child-1', 'child-2')
    assert not executed.is_postponed
    assert block.receipt_by_id('now') == executed
    assert block.receipt_by_id('later') is None

    postponed, = block.postponed_receipts()
    assert postponed.receipt_id == 'later'
    assert postponed.is_postponed


def test_lists_are_built_once():
    block = Block(StreamerMessageFactory(shard_count=2))
    assert block.transactions() is block.transactions()
    assert block.receipts() is block.receipts()
    assert block.receipts() == ()
