from .blocks import (  # noqa: F401
    BlockHeaderViewFactory,
    BlockViewFactory,
    ChunkHeaderViewFactory,
    CryptoHashFactory,
)
from .shards import (  # noqa: F401
    ChunkViewFactory,
    ReceiptExecutionOutcomeFactory,
    ReceiptViewFactory,
    ShardViewFactory,
    TransactionWithOutcomeFactory,
)
from .messages import (  # noqa: F401
    StreamerMessageFactory,
    build_chain,
)
