"""Verification flow orchestrator.

:class:`AgeVerifier` composes the PKCE generator, popup controller,
message channel, token exchange client and verification client into one
awaitable operation, :meth:`AgeVerifier.start_verification`, and answers
capability questions (:meth:`AgeVerifier.is_verified`) from the stored
access token.

State machine::

    idle -> awaiting_popup -> awaiting_code -> exchanging_token
         -> verifying -> verified -> idle
                      \\-> failed -> idle   (from any step)

Flow failures never escape :meth:`~AgeVerifier.start_verification`. They
come back as :class:`~agegate.models.Err` and are also pushed to ``error``
listeners. Success comes back as :class:`~agegate.models.Ok` and is pushed
to ``verified`` listeners. Each attempt is cleaned up exactly once: popup
closed, watchers stopped, channel unsubscribed, PKCE material dropped.

At most one attempt is live per instance. Starting a new one, or calling
:meth:`~AgeVerifier.logout`, retires the previous attempt: it resolves to
``Err(session_superseded)`` without touching the state machine or firing
listeners. A token exchange already on the wire is allowed to finish, and
its result is discarded.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Literal, Optional, Union
from urllib.parse import urlencode

import httpx

from agegate.cancellation import CancellationToken
from agegate.channel import MessageChannel
from agegate.client.http import BackendClient
from agegate.client.token import TokenExchangeClient
from agegate.client.verification import VerificationClient, is_verified
from agegate.config import require_client_id
from agegate.exceptions import (
    AgeGateError,
    AuthorizationError,
    InvalidStateError,
    SessionSupersededError,
    TokenExchangeError,
    VerificationError,
)
from agegate.models import (
    AccessToken,
    AgeFlags,
    AuthorizationDenied,
    ClientConfig,
    Err,
    ErrorInfo,
    FlowState,
    Ok,
    Result,
    VerificationResult,
    VerificationSession,
    VerificationStatus,
)
from agegate.output import debug
from agegate.popup import PopupController, PopupHandle
from agegate.token_store import MemoryTokenStore, TokenStore

logger = logging.getLogger(__name__)

EventName = Literal["verified", "error", "state"]
Listener = Callable[[Any], None]

_EVENTS: tuple[str, ...] = ("verified", "error", "state")


class _Attempt:
    """Bookkeeping for one ``start_verification()`` call."""

    def __init__(self, token: CancellationToken) -> None:
        self.token = token
        self.session: Optional[VerificationSession] = None
        self.handle: Optional[PopupHandle] = None
        self.subscribed = False
        self.cleaned = False


class AgeVerifier:
    """Runs the OAuth 2.0 authorization code + PKCE age verification flow.

    Args:
        config: Client configuration. ``client_id`` is required to start a
            verification; its absence is reported as a
            ``configuration_error`` result, not raised.
        channel: Source of authorization messages. A fresh
            :class:`~agegate.channel.MessageChannel` by default.
        popup_controller: Opens the authorization window. Defaults to a
            browser-backed controller using ``config.timeout`` and
            ``config.poll_interval``.
        token_store: Slot for the access token, in memory by default.
        backend: Client for the backend proxy; built from ``config`` when
            omitted.
        transport: httpx transport for the default backend client.
        redirect_uri: Redirect URI sent to the provider and the token
            endpoint. Falls back to ``config.redirect_uri``, then to
            ``config.api_url``.
        on_verified: Shortcut for ``on("verified", ...)``.
        on_error: Shortcut for ``on("error", ...)``.

    Example::

        verifier = AgeVerifier(ClientConfig(client_id="demo-client-123"))
        result = await verifier.start_verification()
        if result.ok and await verifier.is_verified(18):
            ...
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        channel: Optional[MessageChannel] = None,
        popup_controller: Optional[PopupController] = None,
        token_store: Optional[TokenStore] = None,
        backend: Optional[BackendClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        redirect_uri: Optional[str] = None,
        on_verified: Optional[Callable[[VerificationResult], None]] = None,
        on_error: Optional[Callable[[ErrorInfo], None]] = None,
    ) -> None:
        self.config = config
        self.channel = channel or MessageChannel()
        self.popup_controller = popup_controller or PopupController(
            poll_interval=config.poll_interval,
            timeout=config.timeout,
        )
        self.token_store = token_store or MemoryTokenStore()
        self._backend = backend or BackendClient(
            config.api_url, timeout=config.http_timeout, transport=transport
        )
        self._tokens = TokenExchangeClient(self._backend, config.token_path)
        self._verifications = VerificationClient(
            self._backend,
            path=config.verify_path,
            method=config.verify_method,
            ttl=config.verification_ttl,
        )
        self.redirect_uri = redirect_uri or config.redirect_uri or config.api_url

        self._listeners: dict[str, list[Listener]] = {name: [] for name in _EVENTS}
        if on_verified is not None:
            self.on("verified", on_verified)
        if on_error is not None:
            self.on("error", on_error)

        self._state = FlowState.IDLE
        self._age_flags = AgeFlags()
        self._current: Optional[_Attempt] = None

    # ------------------------------------------------------------------ #
    # Properties and events
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> FlowState:
        return self._state

    @property
    def age_flags(self) -> AgeFlags:
        """Flags from the most recent successful verification (all false otherwise)."""
        return self._age_flags

    def on(self, event: EventName, callback: Listener) -> Callable[[], None]:
        """Subscribe *callback* to ``verified``, ``error`` or ``state`` events.

        Returns:
            A function that removes the subscription.

        Raises:
            ValueError: For an unknown event name.
        """
        if event not in self._listeners:
            raise ValueError(f"Unknown event '{event}': must be one of {', '.join(_EVENTS)}")
        listeners = self._listeners[event]
        listeners.append(callback)

        def unsubscribe() -> None:
            if callback in listeners:
                listeners.remove(callback)

        return unsubscribe

    def _emit(self, event: str, payload: Any) -> None:
        for callback in list(self._listeners[event]):
            if event == "error":
                # A failing error listener must not mask the failure it reports.
                try:
                    callback(payload)
                except Exception:
                    logger.exception("error listener raised")
            else:
                callback(payload)

    def _set_state(self, state: FlowState) -> None:
        if state == self._state:
            return
        debug(f"Flow state {self._state.value} -> {state.value}")
        self._state = state
        self._emit("state", state)

    # ------------------------------------------------------------------ #
    # Verification flow
    # ------------------------------------------------------------------ #

    def build_authorization_url(self, session: VerificationSession, client_id: str) -> str:
        """Authorization endpoint URL carrying *session*'s state and challenge."""
        params = {
            "client_id": client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": self.config.scope,
            "state": session.state,
            "code_challenge": session.code_challenge,
            "code_challenge_method": "S256",
        }
        return f"{self.config.auth_url}{self.config.login_path}?{urlencode(params)}"

    async def start_verification(self) -> Result:
        """Run one verification attempt to completion.

        Returns:
            ``Ok(VerificationResult)`` when the flags were retrieved, or
            ``Err(ErrorInfo)`` for popup blocked, user cancel, timeout,
            provider error, state mismatch, token exchange failure,
            verification failure or missing configuration. Any other exception
            is reported as ``unknown_error`` with the original chained as
            ``__cause__``.
        """
        self._supersede("A newer verification session was started")

        attempt = _Attempt(CancellationToken())
        self._current = attempt

        try:
            client_id = require_client_id(self.config)

            session = VerificationSession.create(self.config.timeout)
            attempt.session = session
            self._set_state(FlowState.AWAITING_POPUP)

            url = self.build_authorization_url(session, client_id)
            debug(f"Authorization URL: {self.config.auth_url}{self.config.login_path}")
            self.channel.subscribe()
            attempt.subscribed = True
            attempt.handle = self.popup_controller.open(
                url,
                self.config.popup_width,
                self.config.popup_height,
                token=attempt.token,
            )
            self._set_state(FlowState.AWAITING_CODE)

            message = await attempt.token.run(self.channel.receive())
            if not attempt.token.claim():
                attempt.token.raise_if_cancelled()

            if isinstance(message, AuthorizationDenied):
                raise AuthorizationError(message.error, message.error_description)
            if message.state != session.state:
                raise InvalidStateError(
                    "Invalid state parameter: the response does not belong to this session"
                )

            self._set_state(FlowState.EXCHANGING_TOKEN)
            access_token = await self._tokens.exchange(
                message.code, session.code_verifier, client_id, self.redirect_uri
            )
            self._ensure_current(attempt)
            self.token_store.save(access_token)

            self._set_state(FlowState.VERIFYING)
            result = await self._verifications.verify(access_token)
            self._ensure_current(attempt)
        except AgeGateError as exc:
            return self._fail(attempt, exc)
        except Exception as exc:
            logger.exception("Unexpected error during verification in state %s", self._state.value)
            wrapped = AgeGateError(f"Unexpected error: {exc}")
            wrapped.__cause__ = exc
            return self._fail(attempt, wrapped)

        self._age_flags = result.age_flags
        self._set_state(FlowState.VERIFIED)
        self._finish(attempt)
        self._emit("verified", result)
        self._set_state(FlowState.IDLE)
        return Ok(result)

    def _ensure_current(self, attempt: _Attempt) -> None:
        if self._current is not attempt:
            raise SessionSupersededError("Verification session is no longer active")

    def _supersede(self, reason: str) -> None:
        """Retire the live attempt, if any, without reporting an error for it."""
        attempt = self._current
        if attempt is None:
            return
        self._current = None
        attempt.token.cancel(SessionSupersededError(reason))
        self._cleanup(attempt)
        self._set_state(FlowState.IDLE)

    def _cleanup(self, attempt: _Attempt) -> None:
        if attempt.cleaned:
            return
        attempt.cleaned = True
        if attempt.handle is not None:
            attempt.handle.close()
        if attempt.subscribed:
            self.channel.unsubscribe()
            attempt.subscribed = False
        attempt.session = None

    def _finish(self, attempt: _Attempt) -> None:
        self._cleanup(attempt)
        if self._current is attempt:
            self._current = None

    def _fail(self, attempt: _Attempt, exc: AgeGateError) -> Err:
        info = ErrorInfo.from_exception(exc)
        if self._current is not attempt:
            # Retired by a newer attempt or logout; that caller owns the state.
            self._cleanup(attempt)
            debug(f"Discarding outcome of retired session: {info.error}")
            return Err(ErrorInfo.from_exception(SessionSupersededError(info.description)), exc)

        debug(f"Verification failed: {info.error}: {info.description}")
        self._set_state(FlowState.FAILED)
        self._finish(attempt)
        self._emit("error", info)
        self._set_state(FlowState.IDLE)
        return Err(info, exc)

    # ------------------------------------------------------------------ #
    # Stored token operations
    # ------------------------------------------------------------------ #

    async def _verify_stored(self) -> Optional[VerificationResult]:
        """Verify the stored token, or return ``None`` when there is none.

        A token the backend rejects with a 4xx is purged.

        Raises:
            VerificationError: If the backend could not be asked.
        """
        token = self.token_store.load()
        if token is None:
            return None
        try:
            return await self._verifications.verify(token)
        except VerificationError as exc:
            if exc.status_code is not None and 400 <= exc.status_code < 500:
                debug(f"Stored token rejected ({exc.status_code}), purging")
                self.token_store.clear()
            raise

    async def is_verified(self, min_age: int = 18) -> bool:
        """Whether the stored token currently satisfies *min_age* (16, 18 or 21).

        Any failure, a missing token and an unsupported tier all answer
        ``False``.
        """
        try:
            result = await self._verify_stored()
        except AgeGateError as exc:
            debug(f"Verification check failed: {exc}")
            return False
        if result is None:
            return False
        self._age_flags = result.age_flags
        return is_verified(result.age_flags, min_age)

    async def get_status(self) -> VerificationStatus:
        """Current verification status from the stored token.

        Returns ``VerificationResult(verified=False)`` when there is no
        usable token or the backend cannot confirm it.
        """
        try:
            result = await self._verify_stored()
        except AgeGateError as exc:
            debug(f"Status check failed: {exc}")
            return VerificationResult(verified=False)
        if result is None:
            return VerificationResult(verified=False)
        self._age_flags = result.age_flags
        return result.model_copy(update={"from_cache": True})

    async def check_existing_verification(self) -> Optional[VerificationResult]:
        """Re-validate a stored token and announce it to ``verified`` listeners.

        Returns:
            The result with ``from_cache=True``, or ``None`` if there is no
            valid stored token.
        """
        try:
            result = await self._verify_stored()
        except AgeGateError as exc:
            debug(f"Existing verification could not be confirmed: {exc}")
            return None
        if result is None or not result.verified:
            return None
        result = result.model_copy(update={"from_cache": True})
        self._age_flags = result.age_flags
        self._emit("verified", result)
        return result

    async def logout(self) -> None:
        """Forget the verification. Callable from any state, idempotent.

        Retires any live attempt, asks the backend to revoke the stored
        token (failures are only logged), empties the token slot and resets
        the age flags.
        """
        self._supersede("Verification cancelled by logout")

        token: Optional[AccessToken] = self.token_store.load()
        if token is not None:
            try:
                await self._tokens.revoke(token, self.config.revoke_path)
            except TokenExchangeError as exc:
                logger.warning("Token revocation failed: %s", exc)

        self.token_store.clear()
        self._age_flags = AgeFlags()
        debug("Logged out")

    async def aclose(self) -> None:
        """Retire any live attempt and close the backend client."""
        self._supersede("Verifier closed")
        await self._backend.aclose()

    async def __aenter__(self) -> AgeVerifier:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()


def result_to_dict(result: Union[Ok[VerificationResult], Err]) -> dict[str, Any]:
    """JSON-friendly rendering of a :data:`~agegate.models.Result`."""
    if isinstance(result, Ok):
        return result.value.model_dump(mode="json", by_alias=True)
    return result.error.model_dump(mode="json")
