from typing import (
    Iterable,
    Optional,
)

from lru import LRU

from lake._utils.logging import get_logger
from lake.context import LakeContextAPI
from lake.primitives import Block
from lake.typing import (
    CryptoHash,
    StreamerMessage,
)


DEFAULT_CACHE_SIZE = 100_000


class ParentTransactionCache(LakeContextAPI):
    """
    Remember which transaction every receipt descends from, so that a receipt executed in a
    later block can be traced back to the transaction that started it.

    Register it as a context of the streamer: before each block is delivered, the
    receipts its transactions were converted into are mapped to the transaction hash, and
    the receipts produced by executing a known receipt inherit its transaction. At most
    ``cache_size`` receipts are remembered, the least recently used ones are dropped first.

    With ``accounts``, only the transactions signed by or sent to one of those accounts
    are tracked.
    """
    logger = get_logger('lake.parent_tx_cache.ParentTransactionCache')

    def __init__(self,
                 cache_size: int = DEFAULT_CACHE_SIZE,
                 accounts: Iterable[str] = ()) -> None:
        self._cache = LRU(cache_size)
        self.accounts = frozenset(accounts)

    def get_parent_transaction_hash(self, receipt_id: CryptoHash) -> Optional[CryptoHash]:
        return self._cache.get(receipt_id)

    def before_delivery(self, message: StreamerMessage) -> None:
        block = Block(message)

        for transaction in block.transactions():
            if not self._is_tracked(transaction.signer_id, transaction.receiver_id):
                continue
            for receipt_id in transaction.receipt_ids:
                self._cache[receipt_id] = transaction.transaction_hash

        for receipt in block.receipts():
            # reading it marks it as recently used
            parent_transaction_hash = self._cache.get(receipt.receipt_id)
            if parent_transaction_hash is None:
                continue
            for produced_receipt_id in receipt.produced_receipt_ids:
                self._cache[produced_receipt_id] = parent_transaction_hash

        self.logger.debug2("Tracking %d receipts after %s", len(self._cache), block)

    def after_delivery(self, message: StreamerMessage) -> None:
        pass

    def _is_tracked(self, signer_id: str, receiver_id: str) -> bool:
        if not self.accounts:
            return True
        return signer_id in self.accounts or receiver_id in self.accounts

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, receipt_id: CryptoHash) -> bool:
        return receipt_id in self._cache
