# Client application schemas.
# Created: 2026-03-06

from __future__ import annotations

from pydantic import BaseModel, Field

from pawauth.oauth2.models import OAuthClient


class ApplicationCreateRequest(BaseModel):
    """Create or update a client application."""

    name: str = Field(..., min_length=1, max_length=200)
    redirect_uris: list[str] = Field(..., min_length=1)
    scopes: list[str] = Field(default_factory=list)
    description: str = ""
    website: str = ""
    trusted: bool = False


class InternalApplicationCreateRequest(ApplicationCreateRequest):
    """Provision a client with caller-chosen credentials."""

    client_id: str = Field(..., min_length=1)
    client_secret: str = Field(..., min_length=1)


class ApplicationResponse(BaseModel):
    """Client application as shown to administrators (secret included)."""

    client_id: str
    client_secret: str
    name: str
    description: str
    website: str
    redirect_uris: list[str]
    scopes: list[str]
    trusted: bool
    active: bool
    created_by: str
    created_at: str

    @classmethod
    def from_client(cls, client: OAuthClient) -> ApplicationResponse:
        return cls(
            client_id=client.client_id,
            client_secret=client.client_secret,
            name=client.client_name,
            description=client.description,
            website=client.website,
            redirect_uris=client.redirect_uris,
            scopes=client.allowed_scopes,
            trusted=client.trusted,
            active=client.active,
            created_by=client.created_by,
            created_at=client.created_at.isoformat(),
        )


class BatchCreateError(BaseModel):
    index: int
    client_id: str
    error: str
    error_description: str


class BatchCreateResponse(BaseModel):
    success_count: int
    error_count: int
    successful: list[ApplicationResponse]
    errors: list[BatchCreateError]
