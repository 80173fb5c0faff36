"""Typed, immutable records used by the member-login flow."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Final, Mapping

from captive_portal.oauth.clock import Clock, default_clock

DEFAULT_FLOW_TTL: Final[int] = 600
DEFAULT_EXPIRES_IN: Final[int] = 3600


@dataclass(frozen=True, slots=True)
class PKCEPair:
    """Code verifier and the S256 challenge derived from it."""

    verifier: str
    challenge: str


@dataclass(frozen=True, slots=True)
class FlowState:
    """Metadata captured when a browser starts a login attempt."""

    csrf_token: str
    code_verifier: str
    redirect_uri: str
    created_at: float = field(default_factory=default_clock)
    # Browser session (``ft_session`` cookie) that started the attempt
    session_id: str | None = None
    ttl_seconds: int = DEFAULT_FLOW_TTL

    def is_expired(self, *, clock: Clock = default_clock) -> bool:
        """Return *True* once the flow reached its TTL."""
        return (clock() - self.created_at) >= self.ttl_seconds


@dataclass(frozen=True, slots=True)
class TokenSet:
    """Tokens returned by the provider for one signed-in member."""

    access_token: str
    token_type: str
    expires_in: int
    obtained_at: float
    refresh_token: str | None = None
    scope: str | None = None

    @property
    def expires_at(self) -> float:
        return self.obtained_at + self.expires_in

    def is_expired(self, *, clock: Clock = default_clock, leeway: int = 30) -> bool:
        """Return *True* when the access token is within *leeway* of expiry."""
        return clock() >= self.expires_at - leeway

    @classmethod
    def from_response(cls, payload: Mapping[str, Any], *, obtained_at: float) -> "TokenSet":
        """Build from a successful token endpoint body.

        Raises ``KeyError`` when ``access_token`` is absent and ``ValueError``
        when ``expires_in`` is not an integer.
        """
        return cls(
            access_token=str(payload["access_token"]),
            token_type=str(payload.get("token_type") or "Bearer"),
            expires_in=int(payload.get("expires_in", DEFAULT_EXPIRES_IN)),
            obtained_at=obtained_at,
            refresh_token=payload.get("refresh_token"),
            scope=payload.get("scope"),
        )


@dataclass(frozen=True, slots=True)
class UserIdentity:
    """Member resolved from an access token."""

    id: str
    email: str | None = None
    name: str | None = None
    attributes: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_response(cls, payload: Mapping[str, Any]) -> "UserIdentity":
        """Build from a user-info body; raises ``KeyError`` without ``id``."""
        user_id = payload["id"]
        if user_id is None or user_id == "":
            raise KeyError("id")
        extra = {k: v for k, v in payload.items() if k not in ("id", "email", "name")}
        return cls(
            id=str(user_id),
            email=payload.get("email"),
            name=payload.get("name"),
            attributes=extra,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = dict(self.attributes)
        data["id"] = self.id
        if self.email is not None:
            data["email"] = self.email
        if self.name is not None:
            data["name"] = self.name
        return data
