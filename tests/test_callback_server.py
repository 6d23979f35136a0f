"""Tests for the loopback redirect receiver."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from agegate.callback_server import LoopbackCallbackServer, payload_from_query
from agegate.channel import MessageChannel
from agegate.models import AuthorizationCode, AuthorizationDenied


class TestPayloadFromQuery:
    def test_code_and_state(self) -> None:
        assert payload_from_query("code=abc123&state=xyz") == {
            "type": "oauth_success",
            "code": "abc123",
            "state": "xyz",
        }

    def test_error(self) -> None:
        payload = payload_from_query("error=access_denied&error_description=User+declined")
        assert payload == {
            "type": "oauth_error",
            "error": "access_denied",
            "error_description": "User declined",
        }

    def test_error_wins_over_code(self) -> None:
        assert payload_from_query("code=abc&error=server_error")["type"] == "oauth_error"

    def test_empty_query(self) -> None:
        payload = payload_from_query("")
        assert payload["type"] == "oauth_error"
        assert payload["error"] == "invalid_request"


class TestLoopbackCallbackServer:
    @pytest.mark.asyncio
    async def test_redirect_posts_success(self, quiet_output) -> None:
        channel = MessageChannel()
        channel.subscribe()
        with LoopbackCallbackServer(channel) as server:
            assert server.redirect_uri.startswith("http://127.0.0.1:")
            assert server.redirect_uri.endswith("/callback")
            with httpx.Client(trust_env=False) as client:
                response = client.get(f"{server.redirect_uri}?code=abc123&state=xyz")
            assert response.status_code == 200
            assert "close this window" in response.text

            message = await asyncio.wait_for(channel.receive(), timeout=2)
        assert message == AuthorizationCode(code="abc123", state="xyz")

    @pytest.mark.asyncio
    async def test_redirect_posts_error(self, quiet_output) -> None:
        channel = MessageChannel()
        channel.subscribe()
        with LoopbackCallbackServer(channel) as server:
            with httpx.Client(trust_env=False) as client:
                response = client.get(f"{server.redirect_uri}?error=access_denied")
            assert "access_denied" in response.text

            message = await asyncio.wait_for(channel.receive(), timeout=2)
        assert isinstance(message, AuthorizationDenied)
        assert message.error == "access_denied"

    @pytest.mark.asyncio
    async def test_error_page_escapes_query_values(self, quiet_output) -> None:
        channel = MessageChannel()
        channel.subscribe()
        with LoopbackCallbackServer(channel) as server:
            with httpx.Client(trust_env=False) as client:
                response = client.get(
                    server.redirect_uri,
                    params={
                        "error": "<script>alert(1)</script>",
                        "error_description": '<img src=x onerror="steal()">',
                    },
                )
            assert "&lt;script&gt;alert(1)&lt;/script&gt;" in response.text
            assert "&lt;img src=x onerror=&quot;steal()&quot;&gt;" in response.text
            assert "<script>" not in response.text
            assert "<img" not in response.text

            message = await asyncio.wait_for(channel.receive(), timeout=2)
        assert isinstance(message, AuthorizationDenied)
        assert message.error == "<script>alert(1)</script>"

    @pytest.mark.asyncio
    async def test_json_post_relay(self, quiet_output) -> None:
        channel = MessageChannel()
        channel.subscribe()
        with LoopbackCallbackServer(channel) as server:
            with httpx.Client(trust_env=False) as client:
                response = client.post(
                    server.redirect_uri,
                    json={"type": "oauth_success", "code": "relayed", "state": "s"},
                )
            assert response.status_code == 202

            message = await asyncio.wait_for(channel.receive(), timeout=2)
        assert message.code == "relayed"

    def test_invalid_json_post(self, quiet_output) -> None:
        with LoopbackCallbackServer(MessageChannel()) as server:
            with httpx.Client(trust_env=False) as client:
                response = client.post(server.redirect_uri, content=b"{not json")
        assert response.status_code == 400

    def test_unknown_path_is_404(self, quiet_output) -> None:
        with LoopbackCallbackServer(MessageChannel()) as server:
            with httpx.Client(trust_env=False) as client:
                response = client.get(f"http://127.0.0.1:{server.port}/favicon.ico")
        assert response.status_code == 404

    def test_stop_is_idempotent(self) -> None:
        server = LoopbackCallbackServer(MessageChannel())
        server.start()
        assert server.running
        server.stop()
        server.stop()
        assert not server.running

    def test_port_requires_running_server(self) -> None:
        with pytest.raises(RuntimeError):
            LoopbackCallbackServer(MessageChannel()).port
