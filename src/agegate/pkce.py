"""PKCE (:rfc:`7636`) helpers: code verifier, S256 challenge and state tokens.

The verifier and the state are drawn uniformly from the unreserved URL
character set using :mod:`secrets`. The challenge is a pure function of
the verifier.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
import string

UNRESERVED_CHARACTERS = string.ascii_letters + string.digits + "-._~"
"""RFC 3986 unreserved characters, the PKCE verifier alphabet."""

MIN_VERIFIER_LENGTH = 43
MAX_VERIFIER_LENGTH = 128


def _random_string(length: int) -> str:
    return "".join(secrets.choice(UNRESERVED_CHARACTERS) for _ in range(length))


def generate_code_verifier(length: int = MAX_VERIFIER_LENGTH) -> str:
    """Generate a PKCE code verifier.

    Args:
        length: Number of characters, between 43 and 128 inclusive.

    Returns:
        A random string over ``[A-Za-z0-9-._~]``.

    Raises:
        ValueError: If *length* is outside the PKCE bounds.
    """
    if not MIN_VERIFIER_LENGTH <= length <= MAX_VERIFIER_LENGTH:
        raise ValueError(
            f"Code verifier length must be between {MIN_VERIFIER_LENGTH} and "
            f"{MAX_VERIFIER_LENGTH}, got {length}"
        )
    return _random_string(length)


def generate_code_challenge(verifier: str) -> str:
    """Derive the S256 code challenge for *verifier*.

    Returns:
        ``BASE64URL(SHA256(verifier))`` without ``=`` padding.
    """
    digest = hashlib.sha256(verifier.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_state(length: int = 32) -> str:
    """Generate an opaque CSRF correlation token."""
    if length < 1:
        raise ValueError(f"State length must be positive, got {length}")
    return _random_string(length)


def generate_pkce_pair() -> tuple[str, str]:
    """Generate a PKCE code_verifier and code_challenge (S256).

    Returns:
        A tuple of ``(code_verifier, code_challenge)``.
    """
    code_verifier = generate_code_verifier()
    return code_verifier, generate_code_challenge(code_verifier)
