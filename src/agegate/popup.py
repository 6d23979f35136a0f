"""Authorization window lifecycle: open, watch, time out, close.

:class:`PopupController` opens the identity provider's login page in a
window obtained from a pluggable :class:`WindowOpener` and hands back a
:class:`PopupHandle`. The handle runs two watchers on the event loop:

* a liveness poll that notices the user closing the window
  (:class:`~agegate.exceptions.UserCancelledError`), and
* a timeout timer that force-closes the window
  (:class:`~agegate.exceptions.TimeoutError_`).

Both report through the session's
:class:`~agegate.cancellation.CancellationToken`, so at most one of them
(or the authorization message) decides how the session ends.

The default :class:`BrowserWindowOpener` launches the system browser via
:mod:`webbrowser`. A browser tab cannot be observed from this process, so
its window only reports ``closed`` after :meth:`BrowserWindow.close`; for
the command line flow the timeout is the effective watchdog.
"""

from __future__ import annotations

import asyncio
import threading
import webbrowser
from dataclasses import dataclass
from typing import Optional, Protocol

from agegate.cancellation import CancellationToken
from agegate.exceptions import PopupBlockedError, TimeoutError_, UserCancelledError
from agegate.output import debug

POPUP_BLOCKED_MESSAGE = "Popup was blocked by browser. Please allow popups for this site."


class Window(Protocol):
    """A window the authorization page was loaded into."""

    @property
    def closed(self) -> bool: ...

    def close(self) -> None: ...


class WindowOpener(Protocol):
    """Opens *url* in a new window; returns ``None`` when the open was refused."""

    def open(self, url: str, geometry: PopupGeometry) -> Optional[Window]: ...


@dataclass(frozen=True)
class PopupGeometry:
    width: int
    height: int
    left: int
    top: int

    def features(self) -> str:
        """Render as a ``window.open`` feature string."""
        return (
            f"width={self.width},height={self.height},"
            f"left={self.left},top={self.top},"
            "scrollbars=yes,resizable=yes"
        )


def centered_geometry(
    width: int, height: int, screen_size: tuple[int, int] = (1920, 1080)
) -> PopupGeometry:
    """Center a *width* x *height* window on a screen, clamped to the top-left corner."""
    screen_width, screen_height = screen_size
    return PopupGeometry(
        width=width,
        height=height,
        left=max(0, (screen_width - width) // 2),
        top=max(0, (screen_height - height) // 2),
    )


class BrowserWindow:
    """Stand-in for a tab opened in the system browser."""

    def __init__(self, url: str) -> None:
        self.url = url
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True


class BrowserWindowOpener:
    """Open the authorization URL with the system browser.

    Args:
        browser: Name passed to :func:`webbrowser.get`; ``None`` uses the
            platform default.
    """

    def __init__(self, browser: Optional[str] = None) -> None:
        self._browser = browser

    def open(self, url: str, geometry: PopupGeometry) -> Optional[Window]:
        try:
            controller = webbrowser.get(self._browser)
        except webbrowser.Error:
            return None

        def open_browser() -> None:
            controller.open(url, new=1)

        browser_thread = threading.Thread(target=open_browser, daemon=True)
        browser_thread.start()
        return BrowserWindow(url)


class PopupHandle:
    """An open authorization window plus its watchers.

    Args:
        window: The opened window.
        token: Cancellation token shared with the rest of the session.
        poll_interval: Seconds between liveness checks.
        timeout: Seconds before the window is force-closed.
    """

    def __init__(
        self,
        window: Window,
        token: CancellationToken,
        poll_interval: float,
        timeout: float,
    ) -> None:
        self.window = window
        self.token = token
        self._poll_interval = poll_interval
        self._timeout = timeout
        self._watchers: list[asyncio.Task[None]] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """Start the liveness poll and the timeout timer on the running loop."""
        loop = asyncio.get_running_loop()
        self._watchers = [
            loop.create_task(self._watch_liveness()),
            loop.create_task(self._watch_timeout()),
        ]

    async def _watch_liveness(self) -> None:
        while not self.token.decided:
            await asyncio.sleep(self._poll_interval)
            if self.token.decided:
                return
            if self.window.closed:
                debug("Authorization window closed by the user")
                self.token.cancel(UserCancelledError("User closed the verification window"))
                return

    async def _watch_timeout(self) -> None:
        await asyncio.sleep(self._timeout)
        if self.token.cancel(TimeoutError_(f"Verification timed out after {self._timeout:g}s")):
            debug("Authorization window timed out, closing")
            self.close()

    def stop_watchers(self) -> None:
        for task in self._watchers:
            if not task.done() and task is not asyncio.current_task():
                task.cancel()
        self._watchers = []

    def close(self) -> None:
        """Stop the watchers and close the window. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        self.stop_watchers()
        if not self.window.closed:
            self.window.close()


class PopupController:
    """Opens authorization windows.

    Args:
        opener: Window opener, :class:`BrowserWindowOpener` by default.
        poll_interval: Seconds between liveness checks.
        timeout: Seconds to wait before force-closing the window.
        screen_size: Screen dimensions used to center the window.

    Example::

        controller = PopupController(timeout=300)
        handle = controller.open(url, 500, 700)
        try:
            message = await handle.token.run(channel.receive())
        finally:
            handle.close()
    """

    def __init__(
        self,
        opener: Optional[WindowOpener] = None,
        poll_interval: float = 1.0,
        timeout: float = 300.0,
        screen_size: tuple[int, int] = (1920, 1080),
    ) -> None:
        self.opener = opener or BrowserWindowOpener()
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.screen_size = screen_size

    def open(
        self,
        url: str,
        width: int,
        height: int,
        token: Optional[CancellationToken] = None,
    ) -> PopupHandle:
        """Open a centered window on *url* and start watching it.

        Must be called from a coroutine running on the event loop.

        Raises:
            PopupBlockedError: If the opener refused to open a window.
        """
        geometry = centered_geometry(width, height, self.screen_size)
        window = self.opener.open(url, geometry)
        if window is None:
            raise PopupBlockedError(POPUP_BLOCKED_MESSAGE)
        debug(f"Opened authorization window ({geometry.features()})")

        handle = PopupHandle(
            window,
            token or CancellationToken(),
            poll_interval=self.poll_interval,
            timeout=self.timeout,
        )
        handle.start()
        return handle
