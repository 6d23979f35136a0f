"""Authorization code to access token exchange."""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from agegate.client.http import BackendClient, error_detail
from agegate.exceptions import ConnectionError_, TokenExchangeError
from agegate.models import AccessToken
from agegate.output import debug, mask_secret


class TokenExchangeClient:
    """Exchanges an authorization code and PKCE verifier for an access token.

    This is a public-client exchange: no client secret is ever sent, the
    verifier proves possession instead. Every failure is terminal for the
    session, since the code cannot be used twice.

    Args:
        backend: Client for the backend proxy.
        path: Token endpoint path.
    """

    def __init__(self, backend: BackendClient, path: str = "/oauth/token") -> None:
        self._backend = backend
        self._path = path

    async def exchange(
        self,
        code: str,
        verifier: str,
        client_id: str,
        redirect_uri: str,
    ) -> AccessToken:
        """Exchange *code* for an :class:`~agegate.models.AccessToken`.

        Raises:
            TokenExchangeError: On a non-2xx response, a network failure,
                or a response without ``access_token``.
        """
        body = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": client_id,
            "code_verifier": verifier,
            "redirect_uri": redirect_uri,
        }
        debug(f"Exchanging authorization code {mask_secret(code)}")

        try:
            response = await self._backend.post(self._path, json_body=body)
        except ConnectionError_ as exc:
            raise TokenExchangeError(f"Token exchange failed: {exc}") from exc

        if not response.is_success:
            raise TokenExchangeError(
                error_detail(response),
                status_code=response.status_code,
                body=response.text,
            )

        try:
            data: Any = response.json()
        except ValueError as exc:
            raise TokenExchangeError(
                "Token response is not valid JSON",
                status_code=response.status_code,
                body=response.text,
            ) from exc

        if not isinstance(data, dict) or not data.get("access_token"):
            raise TokenExchangeError(
                "Token response missing 'access_token' field",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            token = AccessToken.from_token_response(data)
        except (ValueError, TypeError, OverflowError, ValidationError) as exc:
            raise TokenExchangeError(
                f"Malformed token response: {exc}",
                status_code=response.status_code,
                body=response.text,
            ) from exc
        debug(f"Received access token {mask_secret(token.value)} (expires {token.expires_at.isoformat()})")
        return token

    async def revoke(self, token: AccessToken, path: str = "/oauth/revoke") -> None:
        """Ask the backend to revoke *token*.

        Raises:
            TokenExchangeError: On a non-2xx response or a network failure.
        """
        debug(f"Revoking access token {mask_secret(token.value)}")
        try:
            response = await self._backend.post(path, json_body={"token": token.value})
        except ConnectionError_ as exc:
            raise TokenExchangeError(f"Token revocation failed: {exc}") from exc
        if not response.is_success:
            raise TokenExchangeError(
                error_detail(response),
                status_code=response.status_code,
                body=response.text,
            )
