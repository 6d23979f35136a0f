"""Exactly-once terminal decisions for an authorization attempt.

A :class:`CancellationToken` is shared by everything that can end a
session while it waits for the authorization message: the popup liveness
poll, the timeout timer, :meth:`~agegate.flow.AgeVerifier.logout` and a
superseding ``start_verification()`` call. The message handler competes
for the same token through :meth:`CancellationToken.claim`. Whoever
decides first wins; every later attempt is a no-op.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Optional, TypeVar

from agegate.exceptions import AgeGateError

T = TypeVar("T")


class CancellationToken:
    """First-wins flag carrying the reason a session was cancelled."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._decided = False
        self._reason: Optional[AgeGateError] = None

    @property
    def decided(self) -> bool:
        """Whether any outcome (message or cancellation) has been recorded."""
        return self._decided

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> Optional[AgeGateError]:
        return self._reason

    def cancel(self, reason: AgeGateError) -> bool:
        """Record *reason* as the outcome unless one was already recorded.

        Returns:
            ``True`` if this call decided the outcome.
        """
        if self._decided:
            return False
        self._decided = True
        self._reason = reason
        self._event.set()
        return True

    def claim(self) -> bool:
        """Record a successful message as the outcome.

        Returns:
            ``True`` if the message won; ``False`` if a cancellation got
            there first.
        """
        if self._decided:
            return False
        self._decided = True
        return True

    def raise_if_cancelled(self) -> None:
        if self._reason is not None:
            raise self._reason

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await *awaitable* unless the token is cancelled first.

        Raises:
            AgeGateError: The cancellation reason, when cancellation wins.
                The pending awaitable is cancelled.
        """
        task = asyncio.ensure_future(awaitable)
        if self._reason is not None:
            task.cancel()
            raise self._reason

        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()

        self.raise_if_cancelled()
        return task.result()
