"""Verification commands -- run the flow and query the stored verification.

* ``agegate verify`` opens the identity provider in the browser, receives
  the redirect on a loopback callback server and prints the age flags.
* ``agegate status`` re-validates the stored token.
* ``agegate check MIN_AGE`` exits ``0`` when the user satisfies the tier
  and ``9`` otherwise, for use in shell scripts.
* ``agegate logout`` revokes and forgets the stored token.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import typer

from agegate.exceptions import AgeGateError
from agegate.exit_codes import EXIT_NOT_VERIFIED
from agegate.models import ClientConfig, Err
from agegate.output import error, format_response, info, success, suggest
from agegate.popup import BrowserWindow, BrowserWindowOpener, PopupGeometry, Window
from agegate.token_store import FileTokenStore, MemoryTokenStore, TokenStore


def _overrides(ctx: typer.Context) -> dict[str, Any]:
    return dict(ctx.obj.get("overrides", {})) if ctx.obj else {}


def _resolve(ctx: typer.Context, **extra: Any) -> ClientConfig:
    from agegate.config import resolve_config

    overrides = _overrides(ctx)
    overrides.update(extra)
    try:
        return resolve_config(overrides)
    except AgeGateError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None


def _token_store(config: ClientConfig) -> TokenStore:
    if config.persist:
        return FileTokenStore(config.store_name)
    return MemoryTokenStore()


class ConsoleWindowOpener:
    """Print the authorization URL instead of launching a browser."""

    def open(self, url: str, geometry: PopupGeometry) -> Optional[Window]:
        info("Open this URL in a browser to continue:")
        info(url)
        return BrowserWindow(url)


async def _run_verify(config: ClientConfig, no_browser: bool, port: int) -> Any:
    from agegate.callback_server import LoopbackCallbackServer
    from agegate.channel import MessageChannel
    from agegate.flow import AgeVerifier
    from agegate.popup import PopupController

    channel = MessageChannel()
    opener = ConsoleWindowOpener() if no_browser else BrowserWindowOpener()
    with LoopbackCallbackServer(channel, port=port) as server:
        verifier = AgeVerifier(
            config,
            channel=channel,
            popup_controller=PopupController(
                opener=opener,
                poll_interval=config.poll_interval,
                timeout=config.timeout,
            ),
            token_store=_token_store(config),
            redirect_uri=config.redirect_uri or server.redirect_uri,
            on_error=lambda err: error(f"{err.error}: {err.description}"),
        )
        async with verifier:
            info("Waiting for the identity provider...")
            return await verifier.start_verification()


def verify_command(
    ctx: typer.Context,
    no_browser: bool = typer.Option(
        False, "--no-browser", help="Print the authorization URL instead of opening a browser."
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Seconds to wait for the identity provider."
    ),
    port: int = typer.Option(
        0, "--port", help="Loopback callback port (0 picks a free port)."
    ),
    min_age: Optional[int] = typer.Option(
        None, "--min-age", help="Also require this age tier (16, 18 or 21)."
    ),
) -> None:
    """Run the age verification flow in the browser.

    Example::

        agegate verify
        agegate --json verify --min-age 18
    """
    from agegate.client.verification import is_verified

    config = _resolve(ctx, timeout=timeout)
    result = asyncio.run(_run_verify(config, no_browser, port))

    if isinstance(result, Err):
        code = result.exception.exit_code if result.exception is not None else 1
        if result.error.error == "popup_blocked":
            suggest("Use --no-browser to print the authorization URL instead.")
        raise typer.Exit(code=code)

    verification = result.value
    format_response(verification.model_dump(mode="json", by_alias=True))
    if min_age is not None and not is_verified(verification.age_flags, min_age):
        error(f"Not verified for {min_age}+")
        raise typer.Exit(code=EXIT_NOT_VERIFIED)
    success("Age verification complete.")


def status_command(ctx: typer.Context) -> None:
    """Show the verification status of the stored token.

    Example::

        agegate status --json
    """
    from agegate.flow import AgeVerifier

    config = _resolve(ctx)

    async def run() -> Any:
        async with AgeVerifier(config, token_store=_token_store(config)) as verifier:
            return await verifier.get_status()

    status = asyncio.run(run())
    format_response(status.model_dump(mode="json", by_alias=True))
    if not status.verified:
        suggest("Run 'agegate verify' to verify your age.")


def check_command(
    ctx: typer.Context,
    min_age: int = typer.Argument(help="Age tier to check: 16, 18 or 21."),
) -> None:
    """Exit 0 if the stored verification satisfies MIN_AGE, 9 otherwise.

    Example::

        agegate check 18 && play-mature-content
    """
    from agegate.flow import AgeVerifier

    config = _resolve(ctx)

    async def run() -> bool:
        async with AgeVerifier(config, token_store=_token_store(config)) as verifier:
            return await verifier.is_verified(min_age)

    verified = asyncio.run(run())
    format_response({"minAge": min_age, "verified": verified})
    if not verified:
        raise typer.Exit(code=EXIT_NOT_VERIFIED)


def logout_command(ctx: typer.Context) -> None:
    """Revoke and forget the stored access token."""
    from agegate.flow import AgeVerifier

    config = _resolve(ctx)

    async def run() -> None:
        async with AgeVerifier(config, token_store=_token_store(config)) as verifier:
            await verifier.logout()

    asyncio.run(run())
    success("Logged out.")
