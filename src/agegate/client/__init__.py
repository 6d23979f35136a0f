"""Backend clients: HTTP transport, token exchange and verification."""

from agegate.client.http import BackendClient, error_detail
from agegate.client.token import TokenExchangeClient
from agegate.client.verification import (
    VerificationClient,
    is_verified,
    normalize_boolean,
    resolve_age_flags,
)

__all__ = [
    "BackendClient",
    "TokenExchangeClient",
    "VerificationClient",
    "error_detail",
    "is_verified",
    "normalize_boolean",
    "resolve_age_flags",
]
