"""Access token persistence: a single mutable slot with expiry checks.

Two implementations of :class:`TokenStore` are provided:

* :class:`MemoryTokenStore` -- process-local, the default for embedding
  applications.
* :class:`FileTokenStore` -- one JSON file per slot under
  ``~/.local/share/agegate/tokens/<name>.json`` (XDG), written atomically
  with ``0o600`` permissions so the bearer token is never world-readable.

Every :meth:`TokenStore.load` checks expiry: an expired token is purged
from the slot and reported as absent.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Optional

from agegate.config import _atomic_write, get_data_dir
from agegate.models import AccessToken
from agegate.output import debug


class TokenStore(ABC):
    """A single slot holding the current :class:`~agegate.models.AccessToken`."""

    @abstractmethod
    def _read(self) -> Optional[AccessToken]:
        """Return the stored token regardless of expiry."""
        ...

    @abstractmethod
    def save(self, token: AccessToken) -> None:
        ...

    @abstractmethod
    def clear(self) -> None:
        """Empty the slot. A no-op when already empty."""
        ...

    def load(self, now: Optional[datetime] = None) -> Optional[AccessToken]:
        """Return the stored token if it has not expired.

        An expired token is purged before returning ``None``.
        """
        token = self._read()
        if token is None:
            return None
        if token.is_expired(now):
            debug("Stored access token expired, purging")
            self.clear()
            return None
        return token


class MemoryTokenStore(TokenStore):
    """Keeps the token in process memory."""

    def __init__(self, token: Optional[AccessToken] = None) -> None:
        self._token = token

    def _read(self) -> Optional[AccessToken]:
        return self._token

    def save(self, token: AccessToken) -> None:
        self._token = token

    def clear(self) -> None:
        self._token = None


def _tokens_dir() -> Path:
    path = get_data_dir() / "tokens"
    path.mkdir(parents=True, exist_ok=True)
    return path


class FileTokenStore(TokenStore):
    """Read/write the token slot for one client on disk.

    Args:
        name: Slot identifier used to derive the file name.

    Example::

        store = FileTokenStore("streamflix")
        store.save(AccessToken(value="tok", expires_at=later))
        assert store.load().value == "tok"
    """

    def __init__(self, name: str = "default") -> None:
        self._name = name
        self._path = _tokens_dir() / f"{name}.json"

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> Optional[AccessToken]:
        if not self._path.is_file():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            return AccessToken.model_validate(data)
        except (json.JSONDecodeError, ValueError, OSError):
            # Unreadable slots are treated as empty.
            return None

    def save(self, token: AccessToken) -> None:
        """Persist *token* atomically with ``0o600`` permissions.

        Raises:
            OSError: If the file cannot be written.
        """
        text = json.dumps(token.model_dump(mode="json"), indent=2) + "\n"
        _atomic_write(self._path, text, mode=0o600)

    def clear(self) -> None:
        if self._path.is_file():
            self._path.unlink()
