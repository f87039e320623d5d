"""Cooperative cancellation for generation runs.

Cancellation is checked, never preemptive: the pipeline calls
``raise_if_cancelled()`` before each chunk, and wraps each network call or
sleep in ``guard()`` so an in-flight request is abandoned promptly.
"""

import asyncio

from screenplay_tts.errors import GenerationCancelled


class CancellationToken:
    def __init__(self):
        self._event = asyncio.Event()
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Cancelled by user"):
        self.reason = reason
        self._event.set()

    def raise_if_cancelled(self):
        if self.cancelled:
            raise GenerationCancelled(self.reason)

    async def guard(self, awaitable):
        """Await ``awaitable`` unless the token fires first.

        Raises GenerationCancelled and cancels the pending task when the token
        wins the race.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise GenerationCancelled(self.reason)
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        raise GenerationCancelled(self.reason)
