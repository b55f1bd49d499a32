# OAuth2 data models.
# Created: 2026-03-02

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class OAuthClient:
    """Registered OAuth2 client application."""

    client_id: str
    client_name: str
    client_secret: str
    redirect_uris: list[str] = field(default_factory=list)
    allowed_scopes: list[str] = field(default_factory=lambda: ["read"])
    description: str = ""
    website: str = ""
    trusted: bool = False
    active: bool = True
    created_by: str = ""
    created_at: datetime = field(default_factory=utcnow)

    def allows_redirect(self, redirect_uri: str) -> bool:
        # Exact string match, no normalization or prefix matching
        return redirect_uri in self.redirect_uris


@dataclass
class AuthorizationCode:
    """Short-lived, single-use authorization code."""

    code: str
    client_id: str
    user_id: str
    redirect_uri: str
    scopes: list[str]
    expires_at: datetime
    code_challenge: str = ""
    code_challenge_method: str = ""
    used: bool = False
    created_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) > self.expires_at


@dataclass
class AccessToken:
    """Bearer access token record."""

    token: str
    client_id: str
    user_id: str
    scopes: list[str]
    expires_at: datetime
    revoked: bool = False
    created_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) > self.expires_at


@dataclass
class RefreshToken:
    """Refresh token pointing at its current access token."""

    token: str
    client_id: str
    user_id: str
    access_token: str
    expires_at: datetime
    revoked: bool = False
    created_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) > self.expires_at


@dataclass
class Scope:
    """Entry in the shared scope vocabulary."""

    name: str
    description: str = ""
    default: bool = False


@dataclass
class TokenGrant:
    """Result of a successful code exchange or refresh."""

    access_token: str
    refresh_token: str
    expires_in: int
    scopes: list[str]
    token_type: str = "Bearer"

    def to_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
            "refresh_token": self.refresh_token,
            "scope": " ".join(self.scopes),
        }
