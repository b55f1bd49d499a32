# Shared FastAPI dependencies for the API layer.
# Created: 2026-03-05
#
# Components hang off ``app.state`` (set by create_api_app); nothing here
# reaches for a module-level singleton.

from __future__ import annotations

import hmac
import math

from fastapi import HTTPException, Request

from pawauth.identity import User
from pawauth.oauth2.errors import InsufficientPrivilege, LoginRequired
from pawauth.oauth2.server import AuthorizationServer

INTERNAL_ACTOR = "internal"


def get_oauth_server(request: Request) -> AuthorizationServer:
    return request.app.state.oauth_server


def get_session_user(request: Request) -> User | None:
    """The signed-in browser user, or None."""
    return request.app.state.session_provider.get_current_user(request)


def require_admin(request: Request) -> User:
    """Require a signed-in user with the ``admin`` role."""
    user = get_session_user(request)
    if user is None:
        raise LoginRequired("authentication required")
    if not user.is_admin:
        raise InsufficientPrivilege("Admin privileges required")
    return user


def _internal_token_from(request: Request) -> str:
    auth = request.headers.get("Authorization", "")
    for prefix in ("Bearer ", "Internal "):
        if auth.startswith(prefix):
            return auth[len(prefix):].strip()
    return request.headers.get("X-Internal-Token", "").strip()


def require_internal_or_admin(request: Request) -> str:
    """Allow the configured internal token or an admin session.

    Returns the creator reference recorded on provisioned clients.
    """
    expected = request.app.state.settings.internal_token
    presented = _internal_token_from(request)
    if expected and presented and hmac.compare_digest(presented.encode(), expected.encode()):
        return INTERNAL_ACTOR
    return require_admin(request).id


def limit_auth_requests(request: Request) -> None:
    """Throttle authorize/token calls per client IP."""
    client_ip = request.client.host if request.client else "unknown"
    limiter = request.app.state.auth_limiter
    if not limiter.allow(client_ip):
        wait = limiter.retry_after(client_ip)
        headers = {"Retry-After": str(math.ceil(wait))} if math.isfinite(wait) else None
        raise HTTPException(status_code=429, detail="Too many requests", headers=headers)
