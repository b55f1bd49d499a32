# Client application management: admin CRUD and internal provisioning.
# Created: 2026-03-06

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, Request, Response
from pydantic import ValidationError

from pawauth.api.deps import get_oauth_server, require_admin, require_internal_or_admin
from pawauth.api.v1.schemas.applications import (
    ApplicationCreateRequest,
    ApplicationResponse,
    BatchCreateError,
    BatchCreateResponse,
    InternalApplicationCreateRequest,
)
from pawauth.identity import User
from pawauth.oauth2.errors import InvalidRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Applications"])


@router.get("/admin/oauth/applications", response_model=list[ApplicationResponse])
async def list_applications(request: Request, admin: User = Depends(require_admin)):
    """List every client application, active or not."""
    server = get_oauth_server(request)
    return [ApplicationResponse.from_client(c) for c in server.clients.list()]


@router.post("/admin/oauth/applications", response_model=ApplicationResponse, status_code=201)
async def create_application(
    request: Request,
    body: ApplicationCreateRequest,
    admin: User = Depends(require_admin),
):
    """Register a client with generated credentials. The secret is returned here."""
    server = get_oauth_server(request)
    client = server.clients.register(
        name=body.name,
        redirect_uris=body.redirect_uris,
        scopes=body.scopes,
        description=body.description,
        website=body.website,
        trusted=body.trusted,
        created_by=admin.id,
    )
    server.audit.log_oauth_event(
        "client_created", actor=admin.id, target=f"client:{client.client_id}"
    )
    return ApplicationResponse.from_client(client)


@router.get("/admin/oauth/applications/{client_id}", response_model=ApplicationResponse)
async def get_application(
    request: Request, client_id: str, admin: User = Depends(require_admin)
):
    server = get_oauth_server(request)
    return ApplicationResponse.from_client(server.clients.get(client_id))


@router.put("/admin/oauth/applications/{client_id}", response_model=ApplicationResponse)
async def update_application(
    request: Request,
    client_id: str,
    body: ApplicationCreateRequest,
    admin: User = Depends(require_admin),
):
    server = get_oauth_server(request)
    client = server.clients.update(
        client_id,
        name=body.name,
        redirect_uris=body.redirect_uris,
        scopes=body.scopes,
        description=body.description,
        website=body.website,
        trusted=body.trusted,
    )
    return ApplicationResponse.from_client(client)


@router.delete("/admin/oauth/applications/{client_id}", status_code=204)
async def delete_application(
    request: Request, client_id: str, admin: User = Depends(require_admin)
):
    """Delete a client together with all of its codes and tokens."""
    server = get_oauth_server(request)
    server.clients.delete(client_id)
    server.audit.log_oauth_event(
        "client_deleted", actor=admin.id, target=f"client:{client_id}"
    )
    return Response(status_code=204)


@router.post("/admin/oauth/applications/{client_id}/toggle", response_model=ApplicationResponse)
async def toggle_application(
    request: Request, client_id: str, admin: User = Depends(require_admin)
):
    """Activate or deactivate a client. Inactive clients cannot authorize."""
    server = get_oauth_server(request)
    return ApplicationResponse.from_client(server.clients.toggle_active(client_id))


@router.post(
    "/admin/oauth/applications/{client_id}/toggle-trusted",
    response_model=ApplicationResponse,
)
async def toggle_application_trusted(
    request: Request, client_id: str, admin: User = Depends(require_admin)
):
    """Flip whether the client may skip the consent screen."""
    server = get_oauth_server(request)
    return ApplicationResponse.from_client(server.clients.toggle_trusted(client_id))


# --- Internal provisioning (internal token or admin session) ---------------


@router.post(
    "/admin/oauth/internal/applications",
    response_model=ApplicationResponse,
    status_code=201,
)
async def internal_create_application(
    request: Request,
    body: InternalApplicationCreateRequest,
    actor: str = Depends(require_internal_or_admin),
):
    """Register a client with caller-chosen client_id and client_secret."""
    server = get_oauth_server(request)
    client = server.clients.register_with_fixed_credentials(
        name=body.name,
        redirect_uris=body.redirect_uris,
        client_id=body.client_id,
        client_secret=body.client_secret,
        scopes=body.scopes,
        description=body.description,
        website=body.website,
        trusted=body.trusted,
        created_by=actor,
    )
    server.audit.log_oauth_event(
        "client_created", actor=actor, target=f"client:{client.client_id}", fixed=True
    )
    return ApplicationResponse.from_client(client)


def _batch_item_client_id(item: Any) -> str:
    client_id = item.get("client_id", "") if isinstance(item, dict) else ""
    return client_id if isinstance(client_id, str) else ""


def _describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"])
        parts.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "; ".join(parts)


@router.post("/admin/oauth/internal/applications/batch", response_model=BatchCreateResponse)
async def internal_batch_create_applications(
    request: Request,
    body: list[Any] = Body(...),
    actor: str = Depends(require_internal_or_admin),
):
    """Provision several clients; each item succeeds or fails on its own."""
    if not body:
        raise InvalidRequest("At least one application must be provided")

    # Items are validated one at a time; failures are reported by index.
    errors: list[BatchCreateError] = []
    indexes: list[int] = []
    items: list[dict] = []
    for index, raw in enumerate(body):
        try:
            item = InternalApplicationCreateRequest.model_validate(raw)
        except ValidationError as exc:
            errors.append(
                BatchCreateError(
                    index=index,
                    client_id=_batch_item_client_id(raw),
                    error="validation_error",
                    error_description=_describe_validation_error(exc),
                )
            )
            continue
        indexes.append(index)
        items.append(item.model_dump())

    server = get_oauth_server(request)
    result = server.clients.batch_register_with_fixed_credentials(items, created_by=actor)
    for client in result.created:
        server.audit.log_oauth_event(
            "client_created", actor=actor, target=f"client:{client.client_id}", fixed=True
        )
    errors.extend(
        BatchCreateError(**{**e, "index": indexes[e["index"]]}) for e in result.errors
    )
    errors.sort(key=lambda e: e.index)
    logger.info("Batch provisioning: %d created, %d failed", len(result.created), len(errors))
    return BatchCreateResponse(
        success_count=len(result.created),
        error_count=len(errors),
        successful=[ApplicationResponse.from_client(c) for c in result.created],
        errors=errors,
    )
