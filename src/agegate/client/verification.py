"""Age-flag retrieval and normalization.

The verification endpoint is known to be inconsistent about how it
reports the age tiers: native booleans, ``"true"``/``"1"`` strings and
numbers all occur, sometimes within one response, and the flags appear
flat, under ``age_flags`` or under ``ageFlags``. Everything here funnels
those shapes into a canonical :class:`~agegate.models.AgeFlags`.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Literal, Optional, Union

from agegate.client.http import BackendClient, error_detail
from agegate.exceptions import ConnectionError_, VerificationError
from agegate.models import AccessToken, AgeFlags, VerificationResult, utcnow
from agegate.output import debug

logger = logging.getLogger(__name__)

FLAG_FIELDS: tuple[str, ...] = ("is_16_plus", "is_18_plus", "is_21_plus")
NESTED_CONTAINERS: tuple[str, ...] = ("age_flags", "ageFlags")
DEFAULT_FRESHNESS = timedelta(minutes=15)


def normalize_boolean(value: Any) -> bool:
    """Coerce a backend flag value to ``bool``.

    ``None`` is false, booleans pass through, strings are true only for
    ``"true"`` (any case) or ``"1"``, numbers are true when nonzero, and
    anything else falls back to truthiness.
    """
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() == "true" or value == "1"
    if isinstance(value, (int, float)):
        # NaN compares unequal to itself and counts as false.
        return value != 0 and value == value
    return bool(value)


def _lookup_flag(data: dict[str, Any], name: str) -> Any:
    value = data.get(name)
    if value is not None:
        return value
    for container in NESTED_CONTAINERS:
        nested = data.get(container)
        if isinstance(nested, dict) and nested.get(name) is not None:
            return nested[name]
    return None


def resolve_age_flags(data: dict[str, Any]) -> AgeFlags:
    """Build :class:`AgeFlags` from a verify response.

    Each flag is looked up as a flat key first, then under ``age_flags``,
    then under ``ageFlags``; a flag found nowhere is false.
    """
    return AgeFlags(**{name: normalize_boolean(_lookup_flag(data, name)) for name in FLAG_FIELDS})


def is_verified(flags: AgeFlags, min_age: int) -> bool:
    """Whether *flags* satisfy *min_age*.

    Only the 16, 18 and 21 tiers exist. Any other age is logged and
    answered with ``False``.
    """
    result = flags.for_age(min_age)
    if result is None:
        logger.warning("Unsupported age tier %r; treating as not verified", min_age)
        return False
    return result


def _parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value:
        return None
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        debug(f"Ignoring unparseable timestamp {value!r}")
        return None


class VerificationClient:
    """Fetches the current age flags for a bearer token.

    Args:
        backend: Client for the backend proxy.
        path: Verify endpoint path.
        method: ``"POST"`` (default) or ``"GET"``.
        ttl: Freshness window in seconds applied when the backend does not
            send ``expires_at``.
    """

    def __init__(
        self,
        backend: BackendClient,
        path: str = "/oauth/verify",
        method: Literal["GET", "POST"] = "POST",
        ttl: Union[int, float] = DEFAULT_FRESHNESS.total_seconds(),
    ) -> None:
        self._backend = backend
        self._path = path
        self._method = method
        self._ttl = timedelta(seconds=ttl)

    async def verify(self, token: Union[AccessToken, str]) -> VerificationResult:
        """Ask the backend for the flags behind *token*.

        Raises:
            VerificationError: If the token is already expired, the request
                fails, the backend answers non-2xx, or the body is not a
                JSON object.
        """
        if isinstance(token, AccessToken):
            if token.is_expired():
                raise VerificationError("Access token has expired")
            value = token.value
        else:
            value = token

        try:
            response = await self._backend.request(
                self._method,
                self._path,
                headers={"Authorization": f"Bearer {value}"},
            )
        except ConnectionError_ as exc:
            raise VerificationError(f"Verification request failed: {exc}") from exc

        if not response.is_success:
            raise VerificationError(error_detail(response), status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as exc:
            raise VerificationError(
                "Verification response is not valid JSON", status_code=response.status_code
            ) from exc
        if not isinstance(data, dict):
            raise VerificationError(
                "Verification response is not a JSON object", status_code=response.status_code
            )

        now = utcnow()
        verified = data.get("verified")
        user_id = data.get("user_id") or data.get("id")
        return VerificationResult(
            verified=True if verified is None else normalize_boolean(verified),
            age_flags=resolve_age_flags(data),
            verification_date=_parse_datetime(data.get("verification_date")) or now,
            expires_at=_parse_datetime(data.get("expires_at")) or now + self._ttl,
            user_id=None if user_id is None else str(user_id),
        )
