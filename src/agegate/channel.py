"""Inbound message channel between the authorization window and the flow.

In a browser the identity provider's popup talks to its opener with
``postMessage``. Here the same contract travels through a
:class:`MessageChannel`: an :class:`asyncio.Queue` that anything can post
raw payloads into (the loopback callback server, an embedding web app,
test code) and that the orchestrator reads from while a session waits for
its authorization code.

The channel is an untrusted inbound surface. Only payloads shaped like::

    {"type": "oauth_success", "code": "...", "state": "..."}
    {"type": "oauth_error", "error": "...", "error_description": "..."}

are surfaced; everything else (extension chatter, devtools bridges,
garbage) is dropped without error.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Optional

from agegate.models import AuthorizationCode, AuthorizationDenied, AuthorizationMessage
from agegate.output import debug

SUCCESS_TYPE = "oauth_success"
ERROR_TYPE = "oauth_error"


def parse_message(payload: Any) -> Optional[AuthorizationMessage]:
    """Turn a raw payload into an authorization message.

    JSON strings are decoded first. Payloads without a recognised ``type``
    return ``None``. A success payload that lacks a code is reported as an
    ``invalid_request`` denial.
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError:
            return None
    if not isinstance(payload, dict):
        return None

    kind = payload.get("type")
    if kind == SUCCESS_TYPE:
        code = payload.get("code")
        if not code:
            return AuthorizationDenied(
                error="invalid_request",
                error_description="Authorization response did not include a code",
            )
        state = payload.get("state")
        return AuthorizationCode(code=str(code), state=None if state is None else str(state))
    if kind == ERROR_TYPE:
        return AuthorizationDenied(
            error=payload.get("error"),
            error_description=payload.get("error_description"),
        )
    return None


class MessageChannel:
    """Queue-backed subscription to authorization messages.

    A subscription lasts for one verification session. Payloads posted
    while nobody is subscribed are discarded so a late redirect from an
    abandoned session can never leak into the next one.

    Example::

        channel = MessageChannel()
        channel.subscribe()
        channel.post({"type": "oauth_success", "code": "abc", "state": "xyz"})
        message = await channel.receive()
        channel.unsubscribe()
    """

    def __init__(self) -> None:
        self._queue: Optional[asyncio.Queue[Any]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def subscribed(self) -> bool:
        return self._queue is not None

    def subscribe(self) -> None:
        """Start a subscription bound to the running event loop.

        Raises:
            RuntimeError: If a subscription is already active, or no event
                loop is running.
        """
        if self._queue is not None:
            raise RuntimeError("MessageChannel already has an active subscription")
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()

    def unsubscribe(self) -> bool:
        """End the active subscription, dropping undelivered payloads.

        Returns:
            ``True`` if a subscription was ended, ``False`` if none was active.
        """
        if self._queue is None:
            return False
        self._queue = None
        self._loop = None
        return True

    def post(self, payload: Any) -> bool:
        """Deliver a raw payload. Must be called on the subscriber's loop.

        Returns:
            ``True`` if the payload was queued.
        """
        if self._queue is None:
            debug("Dropping message posted with no active subscription")
            return False
        self._queue.put_nowait(payload)
        return True

    def post_threadsafe(self, payload: Any) -> bool:
        """Deliver a raw payload from another thread (e.g. the callback server)."""
        loop = self._loop
        if loop is None or loop.is_closed():
            debug("Dropping message posted with no active subscription")
            return False
        loop.call_soon_threadsafe(self.post, payload)
        return True

    def receive(self) -> Awaitable[AuthorizationMessage]:
        """Wait for the next recognised authorization message.

        The subscription is bound when ``receive()`` is called, not when the
        returned awaitable first runs.

        Raises:
            RuntimeError: If called without an active subscription.
        """
        queue = self._queue
        if queue is None:
            raise RuntimeError("MessageChannel.receive() called without a subscription")
        return self._next_message(queue)

    async def _next_message(self, queue: asyncio.Queue[Any]) -> AuthorizationMessage:
        while True:
            payload = await queue.get()
            message = parse_message(payload)
            if message is None:
                debug("Ignoring unrecognised message on authorization channel")
                continue
            return message
