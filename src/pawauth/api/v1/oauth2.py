# OAuth2 router: authorize, consent decision, token, revoke, userinfo.
# Created: 2026-03-05

from __future__ import annotations

import base64
import binascii
import logging
from urllib.parse import unquote

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import ValidationError

from pawauth.api.deps import get_oauth_server, get_session_user, limit_auth_requests
from pawauth.api.v1.schemas.oauth2 import (
    ConsentDecision,
    RedirectURL,
    RevokeRequest,
    ScopeInfo,
    TokenRequest,
    TokenResponse,
)
from pawauth.oauth2.codes import AuthorizeRequest
from pawauth.oauth2.errors import InvalidClient, InvalidRequest, InvalidToken

logger = logging.getLogger(__name__)

router = APIRouter(tags=["OAuth2"])

_NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "body"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


def _basic_credentials(request: Request) -> tuple[str, str] | None:
    """Decode ``Authorization: Basic`` client credentials, if present."""
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Basic "):
        return None
    try:
        decoded = base64.b64decode(auth[6:].strip(), validate=True).decode()
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise InvalidClient("malformed Basic credentials") from exc
    client_id, sep, secret = decoded.partition(":")
    if not sep:
        raise InvalidClient("malformed Basic credentials")
    return unquote(client_id), unquote(secret)


async def _form_dict(request: Request) -> dict[str, str]:
    form = await request.form()
    return {key: value for key, value in form.items() if isinstance(value, str)}


@router.get("/oauth/authorize", dependencies=[Depends(limit_auth_requests)])
async def authorize(
    request: Request,
    response_type: str = Query(""),
    client_id: str = Query(""),
    redirect_uri: str = Query(""),
    scope: str = Query(""),
    state: str = Query(""),
    code_challenge: str = Query(""),
    code_challenge_method: str = Query(""),
):
    """Start the authorization-code flow.

    Redirects to login when no user is signed in, straight back to the client
    for trusted applications, and otherwise returns the consent payload.
    """
    server = get_oauth_server(request)
    req = AuthorizeRequest(
        response_type=response_type,
        client_id=client_id,
        redirect_uri=redirect_uri,
        scope=scope,
        state=state,
        code_challenge=code_challenge,
        code_challenge_method=code_challenge_method,
    )
    result = server.authorize(req, get_session_user(request))
    if result.redirect_to is not None:
        return RedirectResponse(result.redirect_to, status_code=302)
    return result.consent


@router.post(
    "/oauth/authorize",
    response_model=RedirectURL,
    dependencies=[Depends(limit_auth_requests)],
)
async def authorize_decision(request: Request):
    """Record the user's consent decision and hand back the client redirect URL."""
    try:
        payload = await request.json()
    except ValueError as exc:
        raise InvalidRequest("request body must be JSON") from exc
    try:
        decision = ConsentDecision.model_validate(payload)
    except ValidationError as exc:
        raise InvalidRequest(_validation_message(exc)) from exc

    server = get_oauth_server(request)
    req = AuthorizeRequest(
        response_type=decision.response_type,
        client_id=decision.client_id,
        redirect_uri=decision.redirect_uri,
        scope=decision.scope,
        state=decision.state,
        code_challenge=decision.code_challenge,
        code_challenge_method=decision.code_challenge_method,
    )
    redirect_url = server.decide(req, decision.authorized, get_session_user(request))
    return RedirectURL(redirect_url=redirect_url)


@router.post(
    "/oauth/token",
    response_model=TokenResponse,
    dependencies=[Depends(limit_auth_requests)],
)
async def token_exchange(request: Request):
    """Exchange an authorization code or refresh token for an access token."""
    body = TokenRequest.model_validate(await _form_dict(request))

    basic = _basic_credentials(request)
    if basic is not None:
        basic_id, basic_secret = basic
        if body.client_id and body.client_id != basic_id:
            raise InvalidRequest("client_id does not match Authorization header")
        body.client_id, body.client_secret = basic_id, basic_secret

    if not body.client_id:
        raise InvalidRequest("client_id is required")

    server = get_oauth_server(request)
    grant = server.token(
        grant_type=body.grant_type,
        client_id=body.client_id,
        code=body.code,
        redirect_uri=body.redirect_uri,
        client_secret=body.client_secret,
        code_verifier=body.code_verifier,
        refresh_token=body.refresh_token,
    )
    return JSONResponse(grant.to_dict(), headers=_NO_STORE)


@router.post("/oauth/revoke")
async def revoke_token(request: Request):
    """Revoke an access or refresh token (always 200, per RFC 7009)."""
    try:
        body = RevokeRequest.model_validate(await _form_dict(request))
    except ValidationError as exc:
        raise InvalidRequest(_validation_message(exc)) from exc

    server = get_oauth_server(request)
    revoked = server.revoke(body.token, body.client_id or None)
    return {"revoked": revoked}


@router.get("/oauth/userinfo")
async def userinfo(request: Request):
    """Return user claims allowed by the bearer token's scopes."""
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer ") or not auth[7:].strip():
        raise InvalidToken("missing bearer token")

    server = get_oauth_server(request)
    return server.userinfo(auth[7:].strip())


@router.get("/oauth/scopes", response_model=list[ScopeInfo])
async def list_scopes(request: Request):
    """List the scope vocabulary clients can request."""
    server = get_oauth_server(request)
    return [
        ScopeInfo(name=s.name, description=s.description, default=s.default)
        for s in server.list_scopes()
    ]
