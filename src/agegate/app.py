"""Typer application factory and CLI entry point for agegate.

This module wires together the top-level Typer application and registers
the built-in commands (``verify``, ``status``, ``check``, ``logout`` and
the ``config`` group).

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. It installs signal handlers, registers commands and
invokes the Typer app. Unhandled exceptions are written to a crash log
under the data directory.

See Also:
    :mod:`agegate.config`: Configuration resolution.
    :mod:`agegate.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import signal
import sys
import traceback
from datetime import datetime
from typing import Any, Optional

import typer

from agegate import __version__
from agegate.exit_codes import EXIT_GENERIC_FAILURE


app = typer.Typer(
    name="agegate",
    help="Verify a user's age tier with an OAuth 2.0 + PKCE identity provider.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"agegate {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    client_id: Optional[str] = typer.Option(
        None, "--client-id", help="OAuth client id (or env:VAR / file:/path)."
    ),
    api_url: Optional[str] = typer.Option(
        None, "--api-url", help="Base URL of the token/verification backend."
    ),
    auth_url: Optional[str] = typer.Option(
        None, "--auth-url", help="Base URL of the identity provider."
    ),
    json_output: bool = typer.Option(
        False, "--json", help="JSON output format."
    ),
    plain_output: bool = typer.Option(
        False, "--plain", help="Plain text output."
    ),
    no_color: bool = typer.Option(
        False, "--no-color", help="Disable color output."
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Skip confirmations."
    ),
) -> None:
    """Root callback executed before every sub-command.

    Initialises the global :class:`~agegate.output.OutputManager` from
    CLI flags and stores the connection overrides in ``ctx.obj`` so that
    sub-commands resolve their configuration with CLI precedence.
    """
    from agegate.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    set_output(OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose))

    ctx.ensure_object(dict)
    ctx.obj["overrides"] = {
        "client_id": client_id,
        "api_url": api_url,
        "auth_url": auth_url,
    }
    ctx.obj["force"] = force
    ctx.obj["verbose"] = verbose


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write a crash traceback to disk and return the log file path."""
    from agegate.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def register_commands() -> None:
    """Attach the built-in commands to :data:`app`. Safe to call repeatedly."""
    if getattr(app, "_agegate_registered", False):
        return
    from agegate.commands.config import config_app
    from agegate.commands.verify import check_command, logout_command, status_command, verify_command

    app.command("verify")(verify_command)
    app.command("status")(status_command)
    app.command("check")(check_command)
    app.command("logout")(logout_command)
    app.add_typer(config_app, name="config", help="Configuration management.")
    app._agegate_registered = True  # type: ignore[attr-defined]


def main() -> None:
    """CLI entry point invoked by the ``agegate`` console script.

    Unhandled :class:`~agegate.exceptions.AgeGateError` instances cause a
    clean exit with the error's ``exit_code``. All other exceptions
    produce a crash log and a generic failure exit.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        register_commands()
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from agegate.exceptions import AgeGateError
        from agegate.output import error

        if isinstance(exc, AgeGateError):
            error(str(exc))
            sys.exit(exc.exit_code)
        else:
            log_path = _write_crash_log(exc)
            error(f"Unexpected error. Debug log: {log_path}")
            sys.exit(EXIT_GENERIC_FAILURE)
