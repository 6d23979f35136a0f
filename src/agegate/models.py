"""Canonical models shared across all agegate modules.

This is the single source of truth for data shapes in the project. The
models fall into three groups:

**Configuration** -- serialised as JSON in the user's config directory:
    :class:`ClientConfig`.

**Flow data** -- created and consumed while a verification runs:
    :class:`FlowState`, :class:`VerificationSession`, :class:`AccessToken`,
    :class:`AgeFlags`, :class:`VerificationResult`,
    :class:`AuthorizationCode`, :class:`AuthorizationDenied`.

**Results** -- what :meth:`~agegate.flow.AgeVerifier.start_verification`
hands back: :class:`ErrorInfo`, :class:`Ok` and :class:`Err`.

All pydantic models use v2 syntax. Models that are shown to UI layers use
a camelCase alias generator, so ``model_dump(by_alias=True)`` yields the
``ageFlags`` / ``is16Plus`` shape browser code expects.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Generic, Literal, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from agegate.exceptions import AgeGateError


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


# --- Configuration ---


class ClientConfig(BaseModel):
    """Settings for one relying-party client.

    Persisted as ``config.json`` by :mod:`agegate.config` and layered with
    project-local config, environment variables and CLI flags.

    Example::

        ClientConfig(
            client_id="demo-client-123",
            api_url="https://streamflix.example",
            auth_url="https://id.example",
        )
    """

    client_id: Optional[str] = Field(
        default=None, description="OAuth client identifier issued by the identity provider"
    )
    api_url: str = Field(
        default="http://localhost:5001",
        description="Base URL of the token/verification backend proxy",
    )
    auth_url: str = Field(
        default="http://localhost:5000",
        description="Base URL of the identity provider's login pages",
    )
    redirect_uri: Optional[str] = Field(
        default=None,
        description="Redirect URI registered for the client (None = loopback callback)",
    )
    scope: str = "age_verification"
    popup_width: int = Field(default=500, gt=0)
    popup_height: int = Field(default=700, gt=0)
    timeout: float = Field(
        default=300.0, gt=0, description="Seconds to wait for the authorization message"
    )
    poll_interval: float = Field(
        default=1.0, gt=0, description="Seconds between popup liveness checks"
    )
    login_path: str = "/oauth/login"
    token_path: str = "/oauth/token"
    verify_path: str = "/oauth/verify"
    revoke_path: str = "/oauth/revoke"
    verify_method: Literal["GET", "POST"] = "POST"
    http_timeout: float = Field(default=30.0, gt=0)
    verification_ttl: int = Field(
        default=900, gt=0, description="Freshness window of a verification, in seconds"
    )
    persist: bool = Field(
        default=True, description="Persist the access token to the data directory"
    )
    store_name: str = Field(
        default="default", description="Name of the on-disk token slot"
    )

    @field_validator("api_url", "auth_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("verify_method", mode="before")
    @classmethod
    def _upper_method(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


# --- Flow data ---


class FlowState(str, enum.Enum):
    """States of the verification state machine."""

    IDLE = "idle"
    AWAITING_POPUP = "awaiting_popup"
    AWAITING_CODE = "awaiting_code"
    EXCHANGING_TOKEN = "exchanging_token"
    VERIFYING = "verifying"
    VERIFIED = "verified"
    FAILED = "failed"


class VerificationSession(BaseModel):
    """Ephemeral PKCE material for one authorization attempt.

    Owned by the orchestrator; never persisted.
    """

    code_verifier: str = Field(min_length=43, max_length=128)
    code_challenge: str
    state: str
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime

    @classmethod
    def create(cls, timeout: float, verifier_length: int = 128) -> VerificationSession:
        """Generate a fresh verifier, challenge and state."""
        from agegate.pkce import generate_code_challenge, generate_code_verifier, generate_state

        verifier = generate_code_verifier(verifier_length)
        created = utcnow()
        return cls(
            code_verifier=verifier,
            code_challenge=generate_code_challenge(verifier),
            state=generate_state(),
            created_at=created,
            expires_at=created + timedelta(seconds=timeout),
        )


class AccessToken(BaseModel):
    """A bearer token and its absolute expiry."""

    value: str
    expires_at: datetime
    token_type: str = "Bearer"
    scope: Optional[str] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        expires = self.expires_at
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return now >= expires

    @classmethod
    def from_token_response(
        cls, data: dict[str, Any], now: Optional[datetime] = None
    ) -> AccessToken:
        """Build a token from an OAuth token endpoint response.

        ``expires_in`` defaults to one hour when the backend omits it.
        """
        now = now or utcnow()
        expires_in = data.get("expires_in")
        if expires_in is None:
            expires_in = 3600
        return cls(
            value=data["access_token"],
            expires_at=now + timedelta(seconds=float(expires_in)),
            token_type=data.get("token_type") or "Bearer",
            scope=data.get("scope") or "age_verification",
        )


class AgeFlags(BaseModel):
    """Normalized age-tier flags. All tiers default to not verified."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    is_16_plus: bool = False
    is_18_plus: bool = False
    is_21_plus: bool = False

    def for_age(self, min_age: int) -> Optional[bool]:
        """Return the flag for *min_age*, or ``None`` for unsupported tiers."""
        return {
            16: self.is_16_plus,
            18: self.is_18_plus,
            21: self.is_21_plus,
        }.get(min_age)


class VerificationResult(BaseModel):
    """Outcome of a verification or status check."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    verified: bool = False
    age_flags: AgeFlags = Field(default_factory=AgeFlags)
    verification_date: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    user_id: Optional[str] = None
    from_cache: bool = False

    def is_stale(self, now: Optional[datetime] = None) -> bool:
        """Whether the freshness window has passed. Informational only."""
        if self.expires_at is None:
            return False
        now = now or utcnow()
        expires = self.expires_at
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return now >= expires


VerificationStatus = VerificationResult
"""What :meth:`~agegate.flow.AgeVerifier.get_status` returns."""


class AuthorizationCode(BaseModel):
    """An ``oauth_success`` message from the authorization window."""

    code: str
    state: Optional[str] = None


class AuthorizationDenied(BaseModel):
    """An ``oauth_error`` message from the authorization window."""

    error: Optional[str] = None
    error_description: Optional[str] = None


AuthorizationMessage = Union[AuthorizationCode, AuthorizationDenied]


# --- Results ---


class ErrorInfo(BaseModel):
    """The normalized ``{error, description}`` shape given to error listeners."""

    error: str
    description: str

    @classmethod
    def from_exception(cls, exc: AgeGateError) -> ErrorInfo:
        return cls(**exc.as_dict())


T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful outcome carrying a value."""

    value: T
    ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class Err:
    """Failed outcome carrying the normalized error and the original exception."""

    error: ErrorInfo
    exception: Optional[AgeGateError] = None
    ok: bool = field(default=False, init=False)


Result = Union[Ok[VerificationResult], Err]
