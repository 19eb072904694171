import asyncio
import logging

import pytest

from lake.exceptions import StorageError
from lake.streamer.completion import (
    LakeCompletion,
    StopReason,
)


@pytest.mark.asyncio
async def test_wait_returns_the_stop_reason():
    completion = LakeCompletion()
    waiter = asyncio.ensure_future(completion.wait())
    await asyncio.sleep(0)
    assert not waiter.done()

    assert completion.set_cancelled()

    assert await asyncio.wait_for(waiter, timeout=1) is StopReason.CANCELLED
    assert completion.is_done
    assert completion.error is None


@pytest.mark.asyncio
async def test_wait_raises_the_error():
    completion = LakeCompletion()
    error = StorageError("AccessDenied")
    assert completion.set_error(error)

    with pytest.raises(StorageError):
        await completion.wait()
    assert completion.error is error
    assert completion.stop_reason is None


@pytest.mark.asyncio
async def test_first_outcome_wins(caplog):
    completion = LakeCompletion()
    first_error = StorageError("first")
    completion.set_error(first_error)

    with caplog.at_level(logging.WARNING):
        assert not completion.set_error(StorageError("second"))
    assert not completion.set_cancelled()

    assert completion.error is first_error
    assert "second" in caplog.text


@pytest.mark.asyncio
async def test_errors_after_a_clean_stop_are_ignored():
    completion = LakeCompletion()
    completion.set_cancelled()
    assert not completion.set_error(StorageError("late"))
    assert await completion.wait() is StopReason.CANCELLED
