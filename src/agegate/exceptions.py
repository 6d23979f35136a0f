"""Exception hierarchy for agegate.

All exceptions inherit from :class:`AgeGateError`, which carries two
class-level attributes:

* ``error_code`` -- the machine-readable code reported in the normalized
  ``{error, description}`` shape handed to error listeners.
* ``exit_code`` -- a constant from :mod:`agegate.exit_codes` used by the
  command line entry point.

The flow orchestrator catches ``AgeGateError`` at its boundary and turns
it into an :class:`~agegate.models.ErrorInfo`; nothing in this hierarchy
is raised past :meth:`~agegate.flow.AgeVerifier.start_verification`.
Any other exception reaching that boundary is wrapped in a plain
``AgeGateError`` (``unknown_error``).

Subclass hierarchy::

    AgeGateError (exit 1)
    +-- ConfigurationError      (exit 2)
    +-- PopupBlockedError       (exit 7)
    +-- UserCancelledError      (exit 3)
    +-- TimeoutError_           (exit 3)
    +-- InvalidStateError       (exit 3)
    +-- AuthorizationError      (exit 3)
    +-- SessionSupersededError  (exit 3)
    +-- TokenExchangeError      (exit 4)
    +-- VerificationError       (exit 5)
    +-- ConnectionError_        (exit 6)
"""

from __future__ import annotations

from typing import Optional

from agegate.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_POPUP_BLOCKED,
    EXIT_TOKEN_EXCHANGE_FAILURE,
    EXIT_VERIFICATION_FAILURE,
)


class AgeGateError(Exception):
    """Base exception for all agegate errors.

    Args:
        message: Human-readable error description. Becomes the
            ``description`` of the normalized error shape.
        exit_code: Optional override for the class-level exit code.
    """

    error_code: str = "unknown_error"
    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code

    @property
    def description(self) -> str:
        return str(self)

    def as_dict(self) -> dict[str, str]:
        """Return the ``{error, description}`` shape used by error listeners."""
        return {"error": self.error_code, "description": self.description}


class ConfigurationError(AgeGateError):
    """Raised for configuration problems (missing client id, invalid JSON, bad URLs)."""

    error_code = "configuration_error"
    exit_code = EXIT_INVALID_USAGE


class PopupBlockedError(AgeGateError):
    """Raised when the authorization window could not be opened."""

    error_code = "popup_blocked"
    exit_code = EXIT_POPUP_BLOCKED


class UserCancelledError(AgeGateError):
    """Raised when the user closes the authorization window before finishing."""

    error_code = "user_cancelled"
    exit_code = EXIT_AUTH_FAILURE


class TimeoutError_(AgeGateError):
    """Raised when no authorization message arrives within the configured timeout.

    Named with a trailing underscore to avoid shadowing the built-in
    ``TimeoutError``.
    """

    error_code = "timeout"
    exit_code = EXIT_AUTH_FAILURE


class InvalidStateError(AgeGateError):
    """Raised when a success message carries a state that does not match the session.

    Indicates a stale session or a cross-site request forgery attempt; the
    authorization code is discarded without being exchanged.
    """

    error_code = "invalid_state"
    exit_code = EXIT_AUTH_FAILURE


class AuthorizationError(AgeGateError):
    """Raised when the identity provider reports an ``oauth_error``.

    The provider's own error code (e.g. ``access_denied``) replaces the
    class-level ``error_code`` so listeners see what the provider said.

    Args:
        error: Provider error code, ``unknown_error`` when missing.
        description: Provider ``error_description``.
    """

    error_code = "unknown_error"
    exit_code = EXIT_AUTH_FAILURE

    def __init__(self, error: Optional[str], description: Optional[str] = None):
        super().__init__(description or "Authentication failed")
        self.error_code = error or "unknown_error"


class SessionSupersededError(AgeGateError):
    """Raised into a session that was replaced by a newer ``start_verification()`` call."""

    error_code = "session_superseded"
    exit_code = EXIT_AUTH_FAILURE


class TokenExchangeError(AgeGateError):
    """Raised when the backend does not exchange the authorization code for a token.

    Args:
        message: The backend's ``error_description`` (or raw body) when
            available, otherwise a local description.
        status_code: HTTP status of the backend response, ``None`` for
            network-level failures.
        body: Raw response body text, if any.
    """

    error_code = "token_exchange_failed"
    exit_code = EXIT_TOKEN_EXCHANGE_FAILURE

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class VerificationError(AgeGateError):
    """Raised when the verification endpoint fails or returns a non-2xx response."""

    error_code = "verification_failed"
    exit_code = EXIT_VERIFICATION_FAILURE

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ConnectionError_(AgeGateError):
    """Raised on network-level failures (timeout, DNS resolution, connection refused).

    Named with a trailing underscore to avoid shadowing the built-in
    ``ConnectionError``.
    """

    error_code = "network_error"
    exit_code = EXIT_CONNECTION_ERROR
