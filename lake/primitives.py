from typing import (
    Any,
    Dict,
    Iterable,
    NamedTuple,
    Optional,
    Tuple,
)

from lake.typing import (
    BlockHeight,
    CryptoHash,
    StreamerMessage,
)


class BlockHeader(NamedTuple):
    height: BlockHeight
    hash: CryptoHash
    prev_hash: CryptoHash
    author: Optional[str]
    timestamp_nanosec: Optional[int]
    epoch_id: Optional[CryptoHash]
    gas_price: Optional[int]
    chunks_included: Optional[int]


class Transaction(NamedTuple):
    transaction_hash: CryptoHash
    signer_id: str
    receiver_id: str
    execution_outcome_id: Optional[CryptoHash]
    # The receipts the transaction was converted into, usually exactly one
    receipt_ids: Tuple[CryptoHash, ...]
    status: Any


class Receipt(NamedTuple):
    receipt_id: CryptoHash
    receiver_id: str
    predecessor_id: str
    # None for receipts that were included in a chunk but not executed yet
    execution_outcome_id: Optional[CryptoHash]
    # The receipts created by executing this one
    produced_receipt_ids: Tuple[CryptoHash, ...]
    logs: Tuple[str, ...]
    status: Any

    @property
    def is_postponed(self) -> bool:
        return self.execution_outcome_id is None


def _optional_int(value: Any) -> Optional[int]:
    # Balances and gas prices are serialized as decimal strings
    if value is None:
        return None
    return int(value)


def _outcome_of(execution_outcome: Dict[str, Any]) -> Dict[str, Any]:
    return execution_outcome.get('outcome', {})


class Block:
    """
    Read-only typed view over a :class:`~lake.typing.StreamerMessage`.

    Only reads fields out of the decoded JSON; the lists are built on first access and
    kept for later ones.
    """
    def __init__(self, message: StreamerMessage) -> None:
        self.streamer_message = message
        self._transactions: Optional[Tuple[Transaction, ...]] = None
        self._receipts: Optional[Tuple[Receipt, ...]] = None
        self._postponed_receipts: Optional[Tuple[Receipt, ...]] = None

    @property
    def block_height(self) -> BlockHeight:
        return self.streamer_message.block_height

    @property
    def block_hash(self) -> CryptoHash:
        return self.streamer_message.block_hash

    @property
    def prev_block_hash(self) -> CryptoHash:
        return self.streamer_message.prev_block_hash

    def header(self) -> BlockHeader:
        raw_header = self.streamer_message.block['header']
        return BlockHeader(
            height=BlockHeight(raw_header['height']),
            hash=CryptoHash(raw_header['hash']),
            prev_hash=CryptoHash(raw_header['prev_hash']),
            author=self.streamer_message.block.get('author'),
            timestamp_nanosec=_optional_int(raw_header.get('timestamp_nanosec')),
            epoch_id=raw_header.get('epoch_id'),
            gas_price=_optional_int(raw_header.get('gas_price')),
            chunks_included=raw_header.get('chunks_included'),
        )

    def transactions(self) -> Tuple[Transaction, ...]:
        """
        The transactions included in the chunks of this block, in shard order.
        """
        if self._transactions is None:
            self._transactions = tuple(
                _to_transaction(raw_transaction)
                for chunk in self._chunks()
                for raw_transaction in chunk.get('transactions', ())
            )
        return self._transactions

    def receipts(self) -> Tuple[Receipt, ...]:
        """
        The receipts executed in this block, in shard order.
        """
        if self._receipts is None:
            self._receipts = tuple(
                _to_executed_receipt(outcome_with_receipt)
                for shard in self.streamer_message.shards
                for outcome_with_receipt in shard.get('receipt_execution_outcomes', ())
            )
        return self._receipts

    def postponed_receipts(self) -> Tuple[Receipt, ...]:
        """
        The receipts included in the chunks of this block, to be executed later.
        """
        if self._postponed_receipts is None:
            self._postponed_receipts = tuple(
                _to_postponed_receipt(raw_receipt)
                for chunk in self._chunks()
                for raw_receipt in chunk.get('receipts', ())
            )
        return self._postponed_receipts

    def receipt_by_id(self, receipt_id: CryptoHash) -> Optional[Receipt]:
        for receipt in self.receipts():
            if receipt.receipt_id == receipt_id:
                return receipt
        return None

    def _chunks(self) -> Iterable[Dict[str, Any]]:
        for shard in self.streamer_message.shards:
            # A shard whose chunk was missing in this block has no chunk at all
            chunk = shard.get('chunk')
            if chunk is not None:
                yield chunk

    def __repr__(self) -> str:
        return f"Block(#{self.block_height}, {self.block_hash})"


def _to_transaction(raw_transaction: Dict[str, Any]) -> Transaction:
    transaction = raw_transaction['transaction']
    execution_outcome = raw_transaction.get('outcome', {}).get('execution_outcome', {})
    outcome = _outcome_of(execution_outcome)
    return Transaction(
        transaction_hash=CryptoHash(transaction['hash']),
        signer_id=transaction['signer_id'],
        receiver_id=transaction['receiver_id'],
        execution_outcome_id=execution_outcome.get('id'),
        receipt_ids=tuple(outcome.get('receipt_ids', ())),
        status=outcome.get('status'),
    )


def _to_executed_receipt(outcome_with_receipt: Dict[str, Any]) -> Receipt:
    receipt = outcome_with_receipt['receipt']
    execution_outcome = outcome_with_receipt.get('execution_outcome', {})
    outcome = _outcome_of(execution_outcome)
    return Receipt(
        receipt_id=CryptoHash(receipt['receipt_id']),
        receiver_id=receipt['receiver_id'],
        predecessor_id=receipt['predecessor_id'],
        execution_outcome_id=execution_outcome.get('id'),
        produced_receipt_ids=tuple(outcome.get('receipt_ids', ())),
        logs=tuple(outcome.get('logs', ())),
        status=outcome.get('status'),
    )


def _to_postponed_receipt(raw_receipt: Dict[str, Any]) -> Receipt:
    return Receipt(
        receipt_id=CryptoHash(raw_receipt['receipt_id']),
        receiver_id=raw_receipt['receiver_id'],
        predecessor_id=raw_receipt['predecessor_id'],
        execution_outcome_id=None,
        produced_receipt_ids=(),
        logs=(),
        status=None,
    )
