"""Tests for cancellation token."""

import asyncio

import pytest

from screenplay_tts.cancellation import CancellationToken
from screenplay_tts.errors import GenerationCancelled


def test_token_starts_uncancelled():
    """Fresh token does not raise."""
    token = CancellationToken()
    assert not token.cancelled
    token.raise_if_cancelled()


def test_cancel_sets_reason():
    """cancel() flips the flag and raise_if_cancelled raises with the reason."""
    token = CancellationToken()
    token.cancel("user pressed stop")
    assert token.cancelled
    with pytest.raises(GenerationCancelled, match="user pressed stop"):
        token.raise_if_cancelled()


def test_guard_returns_result():
    """Uncancelled guard passes the awaited value through."""
    async def scenario():
        token = CancellationToken()

        async def work():
            return 42

        return await token.guard(work())

    assert asyncio.run(scenario()) == 42


def test_guard_propagates_errors():
    """Exceptions from the awaited work are not swallowed."""
    async def scenario():
        token = CancellationToken()

        async def work():
            raise ValueError("bad")

        await token.guard(work())

    with pytest.raises(ValueError, match="bad"):
        asyncio.run(scenario())


def test_guard_on_cancelled_token_never_starts_work():
    """Already-cancelled token raises without running the coroutine."""
    started = []

    async def scenario():
        token = CancellationToken()
        token.cancel()

        async def work():
            started.append(True)

        await token.guard(work())

    with pytest.raises(GenerationCancelled):
        asyncio.run(scenario())
    assert started == []


def test_guard_abandons_in_flight_work():
    """Cancelling mid-await cancels the pending task promptly."""
    finished = []

    async def scenario():
        token = CancellationToken()

        async def slow():
            await asyncio.sleep(10)
            finished.append(True)

        async def cancel_soon():
            await asyncio.sleep(0)
            token.cancel("stop")

        canceller = asyncio.ensure_future(cancel_soon())
        try:
            await token.guard(slow())
        finally:
            await canceller

    with pytest.raises(GenerationCancelled, match="stop"):
        asyncio.run(scenario())
    assert finished == []
