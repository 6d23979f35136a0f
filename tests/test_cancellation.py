"""Tests for the first-wins cancellation token."""

from __future__ import annotations

import asyncio

import pytest

from agegate.cancellation import CancellationToken
from agegate.exceptions import TimeoutError_, UserCancelledError


class TestDecisions:
    def test_first_cancel_wins(self) -> None:
        token = CancellationToken()
        assert token.cancel(UserCancelledError("closed")) is True
        assert token.cancel(TimeoutError_("late")) is False
        assert isinstance(token.reason, UserCancelledError)

    def test_claim_blocks_cancel(self) -> None:
        token = CancellationToken()
        assert token.claim() is True
        assert token.cancel(TimeoutError_("late")) is False
        assert token.decided
        assert not token.cancelled

    def test_cancel_blocks_claim(self) -> None:
        token = CancellationToken()
        token.cancel(UserCancelledError("closed"))
        assert token.claim() is False
        with pytest.raises(UserCancelledError):
            token.raise_if_cancelled()


class TestRun:
    @pytest.mark.asyncio
    async def test_returns_result(self) -> None:
        async def work() -> str:
            return "done"

        assert await CancellationToken().run(work()) == "done"

    @pytest.mark.asyncio
    async def test_cancellation_interrupts_awaitable(self) -> None:
        token = CancellationToken()
        started = asyncio.Event()
        cancelled = asyncio.Event()

        async def wait_forever() -> None:
            started.set()
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                cancelled.set()
                raise

        async def cancel_soon() -> None:
            await started.wait()
            token.cancel(TimeoutError_("timed out"))

        canceller = asyncio.create_task(cancel_soon())
        with pytest.raises(TimeoutError_):
            await token.run(wait_forever())
        await canceller
        await asyncio.wait_for(cancelled.wait(), timeout=1)

    @pytest.mark.asyncio
    async def test_already_cancelled_raises_immediately(self) -> None:
        token = CancellationToken()
        token.cancel(UserCancelledError("closed"))

        async def work() -> str:
            return "never"

        with pytest.raises(UserCancelledError):
            await token.run(work())

    @pytest.mark.asyncio
    async def test_awaitable_exception_propagates(self) -> None:
        async def boom() -> None:
            raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            await CancellationToken().run(boom())
