"""Loopback HTTP server that receives the identity provider's redirect.

The provider redirects the browser to ``http://127.0.0.1:<port>/callback``
with either ``?code=...&state=...`` or ``?error=...&error_description=...``.
The server converts the query into the message shape the
:class:`~agegate.channel.MessageChannel` understands and posts it from its
own thread with :meth:`~agegate.channel.MessageChannel.post_threadsafe`.

A JSON ``POST /callback`` is also accepted, for pages that relay the
provider's message themselves.
"""

from __future__ import annotations

import html
import json
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Optional
from urllib.parse import parse_qs, urlparse

from agegate.channel import ERROR_TYPE, SUCCESS_TYPE, MessageChannel
from agegate.output import debug

_SUCCESS_PAGE = (
    "Verification complete! You can close this window and return to the application."
)


def payload_from_query(query: str) -> dict[str, Any]:
    """Map a redirect query string onto an authorization message payload."""
    params = parse_qs(query)

    def first(name: str) -> Optional[str]:
        values = params.get(name)
        return values[0] if values else None

    if "error" in params:
        return {
            "type": ERROR_TYPE,
            "error": first("error"),
            "error_description": first("error_description"),
        }
    if "code" in params:
        return {"type": SUCCESS_TYPE, "code": first("code"), "state": first("state")}
    return {
        "type": ERROR_TYPE,
        "error": "invalid_request",
        "error_description": "No authorization code received",
    }


def _make_handler(channel: MessageChannel, callback_path: str) -> type[BaseHTTPRequestHandler]:
    class CallbackHandler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:
            parsed = urlparse(self.path)
            if parsed.path != callback_path:
                self._reply(404, "text/plain; charset=utf-8", "Not found")
                return

            payload = payload_from_query(parsed.query)
            channel.post_threadsafe(payload)

            if payload["type"] == SUCCESS_TYPE:
                body = _SUCCESS_PAGE
            else:
                body = f"Verification failed: {html.escape(payload['error'])}"
                if payload.get("error_description"):
                    body += f" - {html.escape(payload['error_description'])}"
            self._reply(
                200,
                "text/html; charset=utf-8",
                f"<html><body><h2>{body}</h2></body></html>",
            )

        def do_POST(self) -> None:
            if urlparse(self.path).path != callback_path:
                self._reply(404, "text/plain; charset=utf-8", "Not found")
                return

            content_length = int(self.headers.get("Content-Length", "0"))
            body_bytes = self.rfile.read(content_length)
            try:
                payload = json.loads(body_bytes)
            except (json.JSONDecodeError, ValueError):
                self._reply(
                    400,
                    "application/json",
                    json.dumps({"error": "invalid_request", "error_description": "Body is not JSON"}),
                )
                return

            channel.post_threadsafe(payload)
            self._reply(202, "application/json", json.dumps({"accepted": True}))

        def _reply(self, status: int, content_type: str, text: str) -> None:
            encoded = text.encode("utf-8")
            self.send_response(status)
            self.send_header("Content-Type", content_type)
            self.send_header("Content-Length", str(len(encoded)))
            self.end_headers()
            self.wfile.write(encoded)

        def log_message(self, format: str, *args: Any) -> None:
            debug(f"callback server: {format % args}")

    return CallbackHandler


class LoopbackCallbackServer:
    """Serve the OAuth redirect target on a loopback port.

    Args:
        channel: Channel the received messages are posted into.
        host: Interface to bind; loopback only.
        port: TCP port, ``0`` picks a free one.
        path: Callback path registered as the redirect URI.

    Example::

        with LoopbackCallbackServer(channel) as server:
            verifier = AgeVerifier(config, channel=channel,
                                   redirect_uri=server.redirect_uri)
            result = await verifier.start_verification()
    """

    def __init__(
        self,
        channel: MessageChannel,
        host: str = "127.0.0.1",
        port: int = 0,
        path: str = "/callback",
    ) -> None:
        self._channel = channel
        self._host = host
        self._requested_port = port
        self._path = path
        self._server: Optional[HTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        if self._server is None:
            raise RuntimeError("Callback server is not running")
        return self._server.server_address[1]

    @property
    def redirect_uri(self) -> str:
        return f"http://{self._host}:{self.port}{self._path}"

    @property
    def running(self) -> bool:
        return self._server is not None

    def start(self) -> None:
        """Bind the socket and serve on a daemon thread.

        Raises:
            OSError: If the port cannot be bound.
        """
        if self._server is not None:
            return
        server = HTTPServer(
            (self._host, self._requested_port), _make_handler(self._channel, self._path)
        )
        self._server = server
        self._thread = threading.Thread(target=server.serve_forever, daemon=True)
        self._thread.start()
        debug(f"Callback server listening on {self.redirect_uri}")

    def stop(self) -> None:
        """Shut the server down. A no-op when it is not running."""
        server = self._server
        if server is None:
            return
        self._server = None
        server.shutdown()
        server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def __enter__(self) -> LoopbackCallbackServer:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()
