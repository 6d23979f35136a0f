"""Shared test fixtures for agegate.

Provides isolated config environments, output state management, a CLI
runner, and in-process fakes for the authorization window and the
backend so flow tests never open a browser or touch the network.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, Optional

import httpx
import pytest

from agegate.config import ENV_OVERRIDES
from agegate.models import ClientConfig
from agegate.output import OutputFormat, OutputManager, reset_output, set_output
from agegate.popup import PopupGeometry


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time.  When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale
    ("I/O operation on closed file").  Resetting forces a fresh manager
    to be created on next use.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Forces XDG layout, points XDG_CONFIG_HOME and XDG_DATA_HOME at
    subdirectories of tmp_path, clears all AGEGATE_* environment variables
    and changes the working directory to tmp_path.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setattr("agegate.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))

    for var in ENV_OVERRIDES:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def client_config() -> ClientConfig:
    """A client configuration pointing at fake hosts with short timings."""
    return ClientConfig(
        client_id="demo-client-123",
        api_url="http://backend.test",
        auth_url="http://idp.test",
        redirect_uri="http://app.test/callback",
        timeout=5.0,
        poll_interval=0.01,
        persist=False,
    )


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a PLAIN-format, quiet OutputManager as the global output."""
    output = OutputManager(format=OutputFormat.PLAIN, no_color=True, quiet=True)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# Authorization window fakes
# ---------------------------------------------------------------------------


class FakeWindow:
    """Window whose ``closed`` flag tests flip to simulate the user."""

    def __init__(self, url: str) -> None:
        self.url = url
        self.closed = False
        self.close_calls = 0

    def close(self) -> None:
        self.close_calls += 1
        self.closed = True


class FakeOpener:
    """Records opened URLs; ``on_open`` runs right after each open.

    Args:
        on_open: Called with the window after it is created. Flow tests use
            it to post the provider's message or to close the window.
        blocked: Refuse every open, as a popup blocker would.
    """

    def __init__(
        self,
        on_open: Optional[Callable[[FakeWindow], None]] = None,
        blocked: bool = False,
    ) -> None:
        self.on_open = on_open
        self.blocked = blocked
        self.windows: list[FakeWindow] = []
        self.geometries: list[PopupGeometry] = []

    @property
    def urls(self) -> list[str]:
        return [w.url for w in self.windows]

    def open(self, url: str, geometry: PopupGeometry) -> Optional[FakeWindow]:
        self.geometries.append(geometry)
        if self.blocked:
            return None
        window = FakeWindow(url)
        self.windows.append(window)
        if self.on_open is not None:
            self.on_open(window)
        return window


@pytest.fixture
def fake_opener() -> FakeOpener:
    return FakeOpener()


@pytest.fixture
def make_opener() -> type[FakeOpener]:
    """The :class:`FakeOpener` class, for tests that need ``on_open`` hooks."""
    return FakeOpener


# ---------------------------------------------------------------------------
# Backend fakes
# ---------------------------------------------------------------------------


class FakeBackend:
    """Route table for :class:`httpx.MockTransport` that records requests.

    Example::

        backend = FakeBackend({"/oauth/token": (200, {"access_token": "tok"})})
        transport = backend.transport()
    """

    def __init__(self, routes: Optional[dict[str, tuple[int, Any]]] = None) -> None:
        self.routes: dict[str, tuple[int, Any]] = dict(routes or {})
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body = self.routes.get(request.url.path, (404, {"error": "not_found"}))
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, json=body)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]

    def json_body(self, index: int) -> Any:
        return json.loads(self.requests[index].content)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
