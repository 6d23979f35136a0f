"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for agegate:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.agegate/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`.
* **User config** -- a single :class:`~agegate.models.ClientConfig`
  JSON file (``config.json``).
* **Project config** -- ``./agegate.json`` next to the embedding app.
* **Precedence resolution** -- :func:`resolve_config` merges CLI flags,
  environment variables, project config and user config.
* **Remote discovery** -- :func:`discover_config` asks the relying
  party's backend for its client id and URLs (``GET /api/config``).
* **Credential resolution** -- :func:`resolve_credential` reads values
  given as ``env:VAR`` or ``file:/path`` descriptors.

All file writes use an atomic temp-file-then-rename strategy
(:func:`_atomic_write`).
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from agegate.exceptions import ConfigurationError
from agegate.models import ClientConfig
from agegate.output import debug, warning

_APP_NAME = "agegate"
_CONFIG_FILENAME = "config.json"
_PROJECT_CONFIG_FILENAME = "agegate.json"

ENV_OVERRIDES: dict[str, str] = {
    "AGEGATE_CLIENT_ID": "client_id",
    "AGEGATE_API_URL": "api_url",
    "AGEGATE_AUTH_URL": "auth_url",
    "AGEGATE_REDIRECT_URI": "redirect_uri",
    "AGEGATE_TIMEOUT": "timeout",
}
"""Environment variables and the :class:`ClientConfig` field each one sets."""


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/agegate/`` (default ``~/.config/agegate/``).
    On macOS/Windows: ``~/.agegate/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (tokens, crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/agegate/`` (default ``~/.local/share/agegate/``).
    On macOS/Windows: ``~/.agegate/data/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file lives in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX. When *mode* is given the
    permissions are applied before any content is written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- User config ---


def _user_config_path() -> Path:
    return get_config_dir() / _CONFIG_FILENAME


def load_user_config() -> ClientConfig:
    """Load the user configuration from the XDG config directory.

    Returns:
        The stored :class:`~agegate.models.ClientConfig`, or a default
        instance when no file exists.

    Raises:
        ConfigurationError: If the file holds invalid JSON or fails
            validation.
    """
    path = _user_config_path()
    if not path.is_file():
        return ClientConfig()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return ClientConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid config at {path}: {exc}") from exc


def save_user_config(config: ClientConfig) -> None:
    """Persist the user configuration atomically."""
    data = config.model_dump(mode="json")
    _atomic_write(_user_config_path(), json.dumps(data, indent=2) + "\n")


# --- Project-local config ---


def load_project_config() -> Optional[dict[str, Any]]:
    """Load project-local configuration from ``./agegate.json``.

    Returns:
        The parsed JSON object, or ``None`` if the file does not exist.

    Raises:
        ConfigurationError: If the file is not a JSON object.
    """
    path = Path.cwd() / _PROJECT_CONFIG_FILENAME
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid project config at {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Project config at {path} must be a JSON object")
    return data


# --- Precedence resolution ---


def _env_overrides() -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for var, field_name in ENV_OVERRIDES.items():
        value = os.environ.get(var)
        if value:
            overrides[field_name] = value
    return overrides


def resolve_config(cli_overrides: Optional[dict[str, Any]] = None) -> ClientConfig:
    """Resolve the effective client configuration.

    Precedence (high to low):
        1. CLI flags (``cli_overrides``; ``None`` values are ignored)
        2. Environment variables (see :data:`ENV_OVERRIDES`)
        3. Project config (``./agegate.json``)
        4. User config (``~/.config/agegate/config.json``)
        5. Defaults

    A ``client_id`` given as ``env:VAR`` or ``file:/path`` is resolved
    through :func:`resolve_credential`.

    Raises:
        ConfigurationError: If any layer is invalid.
    """
    data = load_user_config().model_dump(mode="json")

    project = load_project_config()
    if project is not None:
        data.update(project)

    data.update(_env_overrides())

    if cli_overrides:
        data.update({k: v for k, v in cli_overrides.items() if v is not None})

    client_id = data.get("client_id")
    if isinstance(client_id, str) and client_id.startswith(("env:", "file:")):
        data["client_id"] = resolve_credential(client_id)

    try:
        return ClientConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc


def require_client_id(config: ClientConfig) -> str:
    """Return the configured client id.

    Raises:
        ConfigurationError: If no client id is configured.
    """
    if not config.client_id:
        raise ConfigurationError(
            "client_id is required (set AGEGATE_CLIENT_ID, --client-id, "
            "or 'agegate config set client_id <id>')"
        )
    return config.client_id


# --- Remote discovery ---

_REMOTE_KEYS: dict[str, tuple[str, ...]] = {
    "client_id": ("clientId", "toknClientId", "client_id"),
    "api_url": ("apiUrl", "toknApiUrl", "api_url"),
    "redirect_uri": ("redirectUri", "redirect_uri"),
}


def parse_remote_config(payload: dict[str, Any]) -> dict[str, Any]:
    """Map a ``/api/config`` response onto :class:`ClientConfig` field names."""
    values: dict[str, Any] = {}
    for field_name, keys in _REMOTE_KEYS.items():
        for key in keys:
            if payload.get(key):
                values[field_name] = payload[key]
                break
    return values


async def discover_config(
    base_url: str,
    fallback: ClientConfig,
    path: str = "/api/config",
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ClientConfig:
    """Fetch the relying party's public config and layer it over *fallback*.

    Discovery is best-effort: a network error, a non-2xx response or a
    malformed body logs a warning and returns *fallback* unchanged.

    Args:
        base_url: Origin of the relying party (e.g. ``https://streamflix.example``).
        fallback: Configuration used for anything the endpoint does not supply.
        path: Config endpoint path.
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).
    """
    url = f"{base_url.rstrip('/')}{path}"
    debug(f"GET {url}")
    try:
        async with httpx.AsyncClient(transport=transport, timeout=fallback.http_timeout) as client:
            response = await client.get(url, headers={"Accept": "application/json"})
        response.raise_for_status()
        payload = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        warning(f"Config discovery failed, using local config: {exc}")
        return fallback

    if not isinstance(payload, dict):
        warning("Config discovery returned a non-object body, using local config")
        return fallback

    merged = fallback.model_dump(mode="json")
    merged.update(parse_remote_config(payload))
    try:
        return ClientConfig.model_validate(merged)
    except ValidationError as exc:
        warning(f"Discovered config is invalid, using local config: {exc}")
        return fallback


# --- Credential source resolution ---


def resolve_credential(source: str) -> str:
    """Resolve a credential from its source descriptor.

    Supported formats:
        - ``"env:VAR_NAME"`` -- reads ``os.environ["VAR_NAME"]``
        - ``"file:/path/to/file"`` -- reads file content, stripped of whitespace

    Raises:
        ConfigurationError: If the source can't be resolved.
    """
    if source.startswith("env:"):
        var_name = source[4:]
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigurationError(
                f"Environment variable '{var_name}' is not set (source: {source})"
            )
        return value

    if source.startswith("file:"):
        path = Path(source[5:]).expanduser()
        if not path.is_file():
            raise ConfigurationError(f"Credential file not found: {path} (source: {source})")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigurationError(f"Cannot read credential file {path}: {exc}") from exc

    raise ConfigurationError(f"Unknown credential source format: {source}")
