from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Iterable,
    Tuple,
)

from lake.typing import StreamerMessage


class LakeContextAPI(ABC):
    """
    Hooks around the delivery of each block to the consumer.

    ``before_delivery`` runs right before a message is handed to the consumer and
    ``after_delivery`` once the consumer is done with it, that is when it asks for the next
    message or closes the stream. Both run exactly once per delivered block and never
    overlap with the hooks of another block.
    """
    @abstractmethod
    def before_delivery(self, message: StreamerMessage) -> None:
        ...

    @abstractmethod
    def after_delivery(self, message: StreamerMessage) -> None:
        ...


class LakeContextGroup(LakeContextAPI):
    """
    Chain several contexts: the ``before_delivery`` hooks run in the order the contexts
    were given, the ``after_delivery`` hooks in the reverse order, so that the first
    context wraps all the others.
    """
    def __init__(self, contexts: Iterable[LakeContextAPI]) -> None:
        self.contexts: Tuple[LakeContextAPI, ...] = tuple(contexts)

    def before_delivery(self, message: StreamerMessage) -> None:
        for context in self.contexts:
            context.before_delivery(message)

    def after_delivery(self, message: StreamerMessage) -> None:
        for context in reversed(self.contexts):
            context.after_delivery(message)

    def __len__(self) -> int:
        return len(self.contexts)

    def __repr__(self) -> str:
        return f"LakeContextGroup({', '.join(map(repr, self.contexts))})"
