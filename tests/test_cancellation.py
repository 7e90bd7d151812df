"""
Tests for the cancellation token and run_cancellable.
"""
import asyncio

import pytest

from realty_enhance.cancellation import CancellationToken, OperationCancelled, run_cancellable


class TestCancellationToken:

    def test_initially_not_cancelled(self):
        token = CancellationToken()
        assert not token.cancelled
        token.raise_if_cancelled()

    def test_cancel_is_idempotent(self):
        token = CancellationToken()
        token.cancel()
        token.cancel()
        assert token.cancelled
        with pytest.raises(OperationCancelled):
            token.raise_if_cancelled()


class TestRunCancellable:

    def test_returns_result_when_not_cancelled(self):
        async def work():
            await asyncio.sleep(0)
            return "done"

        async def scenario():
            return await run_cancellable(work(), CancellationToken())

        assert asyncio.run(scenario()) == "done"

    def test_propagates_errors(self):
        async def work():
            raise ValueError("bad input")

        async def scenario():
            await run_cancellable(work(), CancellationToken())

        with pytest.raises(ValueError, match="bad input"):
            asyncio.run(scenario())

    def test_token_interrupts_and_unwinds_work(self):
        unwound = []

        async def work():
            try:
                await asyncio.sleep(30)
            finally:
                unwound.append(True)

        async def scenario():
            token = CancellationToken()
            asyncio.get_running_loop().call_later(0.01, token.cancel)
            await run_cancellable(work(), token)

        with pytest.raises(OperationCancelled):
            asyncio.run(scenario())
        assert unwound == [True]

    def test_already_cancelled_never_starts_work(self):
        started = []

        async def work():
            started.append(True)

        async def scenario():
            token = CancellationToken()
            token.cancel()
            await run_cancellable(work(), token)

        with pytest.raises(OperationCancelled):
            asyncio.run(scenario())
        assert started == []
