# OAuth2 schemas.
# Created: 2026-03-05

from __future__ import annotations

from pydantic import BaseModel, StrictBool


class ConsentDecision(BaseModel):
    """Body of POST /oauth/authorize.

    ``authorized`` must be a JSON boolean; anything else is rejected.
    """

    authorized: StrictBool
    client_id: str
    redirect_uri: str
    response_type: str = "code"
    scope: str = ""
    state: str = ""
    code_challenge: str = ""
    code_challenge_method: str = ""


class RedirectURL(BaseModel):
    redirect_url: str


class TokenRequest(BaseModel):
    """Form fields of POST /oauth/token."""

    grant_type: str = ""
    code: str = ""
    redirect_uri: str = ""
    client_id: str = ""
    client_secret: str = ""
    code_verifier: str = ""
    refresh_token: str = ""


class TokenResponse(BaseModel):
    """OAuth2 token response."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    refresh_token: str | None = None
    scope: str


class RevokeRequest(BaseModel):
    """Token revocation request."""

    token: str
    client_id: str = ""


class ScopeInfo(BaseModel):
    name: str
    description: str
    default: bool
