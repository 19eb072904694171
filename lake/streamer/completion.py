import asyncio
import enum
from typing import Optional

from lake._utils.logging import get_logger


class StopReason(enum.Enum):
    CANCELLED = 'cancelled'


class LakeCompletion:
    """
    The set-once outcome of a streaming pipeline: either it was cancelled, or it stopped on
    its first fatal error. Whoever sets it first wins; errors reported after that are only
    logged.
    """
    logger = get_logger('lake.streamer.completion.LakeCompletion')

    def __init__(self) -> None:
        self._done = asyncio.Event()
        self._stop_reason: Optional[StopReason] = None
        self._error: Optional[BaseException] = None

    @property
    def is_done(self) -> bool:
        return self._done.is_set()

    @property
    def stop_reason(self) -> Optional[StopReason]:
        return self._stop_reason

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    def set_cancelled(self) -> bool:
        """
        Record a clean stop. Returns ``False`` if the outcome was already decided.
        """
        if self.is_done:
            return False
        self._stop_reason = StopReason.CANCELLED
        self._done.set()
        return True

    def set_error(self, error: BaseException) -> bool:
        """
        Record the fatal error that stopped the pipeline. Returns ``False``, and logs the
        error, if the outcome was already decided.
        """
        if self.is_done:
            self.logger.warning(
                "Ignoring %r, the streamer already stopped with %s",
                error,
                self._describe(),
            )
            return False
        self._error = error
        self._done.set()
        return True

    async def wait(self) -> StopReason:
        """
        Wait until the pipeline stopped. Return the :class:`StopReason` of a clean stop, or
        raise the error it failed with.
        """
        await self._done.wait()
        if self._error is not None:
            raise self._error
        elif self._stop_reason is None:
            raise Exception("Invariant: a finished completion has a stop reason or an error")
        else:
            return self._stop_reason

    def _describe(self) -> str:
        if self._error is not None:
            return repr(self._error)
        else:
            return str(self._stop_reason)

    def __repr__(self) -> str:
        if self.is_done:
            return f"LakeCompletion({self._describe()})"
        else:
            return "LakeCompletion(pending)"
