"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~agegate.exceptions.AgeGateError` subclass.
Shell wrappers can gate content on the exit code of ``agegate check``
without parsing stderr.

Example::

    $ agegate check 18
    $ echo $?
    9   # EXIT_NOT_VERIFIED -- the user is not verified for 18+
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required parameters."""

EXIT_AUTH_FAILURE = 3
"""The authorization step failed (denied, cancelled, timed out, state mismatch)."""

EXIT_TOKEN_EXCHANGE_FAILURE = 4
"""The backend refused to exchange the authorization code."""

EXIT_VERIFICATION_FAILURE = 5
"""The backend refused or failed the age verification request."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""

EXIT_POPUP_BLOCKED = 7
"""The authorization window could not be opened."""

EXIT_NOT_VERIFIED = 9
"""The user is not verified for the requested age tier."""
