"""Asynchronous HTTP transport for the token/verification backend.

:class:`BackendClient` wraps :class:`httpx.AsyncClient` with the pieces
every backend call shares: the base URL, the request timeout, debug
logging of each request, and mapping of network failures onto
:class:`~agegate.exceptions.ConnectionError_`.

Status codes are *not* mapped here: a 400 from the token endpoint and a
401 from the verify endpoint mean different things, so each caller
inspects the response itself. Nothing is retried. Authorization codes
are single-use, and a failed verification is re-initiated by the user.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx

from agegate.exceptions import ConnectionError_
from agegate.output import debug


def error_detail(response: httpx.Response) -> str:
    """Extract the most useful error text from a backend response.

    Tries ``error_description``, then ``error``, then ``message`` from a
    JSON body and falls back to the raw text.
    """
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        for key in ("error_description", "error", "message"):
            value = payload.get(key)
            if value:
                return str(value)
    return response.text[:500] if response.text else f"HTTP {response.status_code}"


class BackendClient:
    """Asynchronous client for the backend proxy.

    Args:
        base_url: Backend origin, e.g. ``https://api.example``.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests pass
            :class:`httpx.MockTransport`).

    Example::

        async with BackendClient("http://localhost:5001") as backend:
            response = await backend.post("/oauth/token", json_body={...})
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def base_url(self) -> str:
        return self._base_url

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
                follow_redirects=True,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> BackendClient:
        self._ensure_client()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------ #
    # Public request methods
    # ------------------------------------------------------------------ #

    async def request(
        self,
        method: str,
        path: str,
        headers: Optional[dict[str, str]] = None,
        json_body: Optional[Any] = None,
    ) -> httpx.Response:
        """Send one request; the response is returned whatever its status.

        Raises:
            ConnectionError_: On network or timeout errors.
        """
        client = self._ensure_client()
        merged_headers = {"Accept": "application/json", **(headers or {})}
        kwargs: dict[str, Any] = {"method": method, "url": path, "headers": merged_headers}
        if json_body is not None:
            kwargs["json"] = json_body

        debug(f"{method} {self._base_url}{path}")
        try:
            response = await client.request(**kwargs)
        except httpx.HTTPError as exc:
            raise ConnectionError_(f"Request to {self._base_url}{path} failed: {exc}") from exc
        debug(f"{method} {path} -> {response.status_code}")
        return response

    async def get(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", path, **kwargs)
