"""Config commands -- view and modify the user configuration.

Provides the ``agegate config`` sub-command group for reading, updating,
resetting and discovering the user's client configuration
(:class:`~agegate.models.ClientConfig`).
"""

from __future__ import annotations

import asyncio

import typer
from pydantic import ValidationError

from agegate.output import error, format_response, info, success


config_app = typer.Typer(no_args_is_help=True)


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    effective: bool = typer.Option(
        False, "--effective", help="Show the resolved config (flags, env and project files applied)."
    ),
) -> None:
    """Show current configuration.

    Example::

        agegate config show
        agegate config show --effective --json
    """
    from agegate.config import get_config_dir, load_user_config, resolve_config
    from agegate.exceptions import AgeGateError

    try:
        if effective:
            overrides = ctx.obj.get("overrides") if ctx.obj else None
            config = resolve_config(overrides)
        else:
            config = load_user_config()
    except AgeGateError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    info(f"Config directory: {get_config_dir()}")
    format_response(config.model_dump(mode="json"))


@config_app.command("set")
def config_set(
    key: str = typer.Argument(help="Config key, e.g. 'client_id' or 'timeout'."),
    value: str = typer.Argument(help="Value to set."),
) -> None:
    """Set a configuration value.

    The value is coerced to the field's type by validation against
    :class:`~agegate.models.ClientConfig` before saving.

    Raises:
        typer.Exit: With code 2 if the key is unknown or validation fails.

    Example::

        agegate config set client_id demo-client-123
        agegate config set timeout 120
        agegate config set persist false
    """
    from agegate.config import load_user_config, save_user_config
    from agegate.models import ClientConfig

    config = load_user_config()
    data = config.model_dump(mode="json")

    if key not in ClientConfig.model_fields:
        error(f"Unknown config key: {key}")
        raise typer.Exit(code=2)

    data[key] = None if value.lower() in ("none", "null") else value

    try:
        new_config = ClientConfig.model_validate(data)
    except ValidationError as exc:
        error(f"Validation error: {exc}")
        raise typer.Exit(code=2) from None

    save_user_config(new_config)
    success(f"Set {key} = {getattr(new_config, key)}")


@config_app.command("reset")
def config_reset(ctx: typer.Context) -> None:
    """Reset configuration to defaults.

    Asks for confirmation unless ``--force`` is active.

    Example::

        agegate --force config reset
    """
    from agegate.config import save_user_config
    from agegate.models import ClientConfig

    force = ctx.obj.get("force", False) if ctx.obj else False
    if not force:
        confirmed = typer.confirm("Reset all config to defaults?")
        if not confirmed:
            info("Cancelled.")
            raise typer.Exit()

    save_user_config(ClientConfig())
    success("Configuration reset to defaults.")


@config_app.command("discover")
def config_discover(
    url: str = typer.Argument(help="Origin of the relying party, e.g. https://streamflix.example."),
    save: bool = typer.Option(False, "--save", help="Persist the discovered values."),
) -> None:
    """Fetch client id and URLs from the relying party's /api/config.

    Example::

        agegate config discover http://localhost:5001 --save
    """
    from agegate.config import discover_config, load_user_config, save_user_config

    current = load_user_config()
    discovered = asyncio.run(discover_config(url, current))
    format_response(discovered.model_dump(mode="json"))
    if save:
        save_user_config(discovered)
        success("Discovered configuration saved.")
