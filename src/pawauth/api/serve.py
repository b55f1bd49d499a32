"""API server for ``pawauth serve``.

Builds the FastAPI app with its storage handle, identity collaborators,
audit log and rate limiter, all created here and attached to ``app.state``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pawauth.config import Settings, get_settings
from pawauth.identity import (
    HeaderSessionProvider,
    IdentityStore,
    InMemoryIdentityStore,
    SessionProvider,
)
from pawauth.oauth2.errors import OAuthError
from pawauth.oauth2.server import AuthorizationServer
from pawauth.oauth2.storage import OAuthStorage
from pawauth.security.audit import AuditLogger
from pawauth.security.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


async def _oauth_error_handler(request: Request, exc: OAuthError) -> JSONResponse:
    headers = {}
    if exc.status_code == 401:
        headers["WWW-Authenticate"] = f'Bearer error="{exc.error}"'
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.description)
    else:
        logger.debug("%s %s -> %s", request.method, request.url.path, exc.error)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code, headers=headers)


async def _validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"])
        parts.append(f"{loc}: {err['msg']}")
    return JSONResponse(
        {"error": "invalid_request", "error_description": "; ".join(parts)},
        status_code=400,
    )


def create_api_app(
    settings: Settings | None = None,
    storage: OAuthStorage | None = None,
    identity: IdentityStore | None = None,
    session_provider: SessionProvider | None = None,
    audit: AuditLogger | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Every collaborator may be injected; anything omitted is built from
    *settings* (or the environment).
    """
    from pawauth import __version__
    from pawauth.api.v1 import mount_v1_routers

    settings = settings or get_settings()
    if storage is None:
        storage = OAuthStorage(settings.resolved_database_path())
    if identity is None:
        identity = (
            InMemoryIdentityStore.from_file(settings.users_path)
            if settings.users_path
            else InMemoryIdentityStore()
        )
    if session_provider is None:
        session_provider = HeaderSessionProvider(identity, settings.session_user_header)
    if audit is None:
        audit = AuditLogger(settings.audit_log_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        storage.close()

    app = FastAPI(
        title="PawAuth",
        description="OAuth 2.0 authorization server.",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.storage = storage
    app.state.session_provider = session_provider
    app.state.auth_limiter = RateLimiter(
        rate=settings.auth_rate_per_second, capacity=settings.auth_rate_burst
    )
    app.state.oauth_server = AuthorizationServer(
        storage,
        identity,
        audit=audit,
        login_url=settings.login_url,
        code_ttl=timedelta(seconds=settings.code_ttl_seconds),
        access_token_ttl=timedelta(seconds=settings.access_token_ttl_seconds),
        refresh_token_ttl=timedelta(seconds=settings.refresh_token_ttl_seconds),
    )

    # --- CORS -----------------------------------------------------------
    if settings.api_cors_allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.api_cors_allowed_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type"],
        )

    app.add_exception_handler(OAuthError, _oauth_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)

    mount_v1_routers(app)

    return app


def run_api_server(
    host: str = "127.0.0.1",
    port: int = 8888,
    dev: bool = False,
) -> None:
    """Start the API server with uvicorn."""
    import uvicorn

    logger.info("PawAuth listening on http://%s:%d (docs at /docs)", host, port)

    if dev:
        import pathlib

        src_dir = str(pathlib.Path(__file__).resolve().parent.parent)
        uvicorn.run(
            "pawauth.api.serve:create_api_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            reload_dirs=[src_dir],
            reload_includes=["*.py"],
            log_level="debug",
        )
    else:
        app = create_api_app()
        uvicorn.run(app, host=host, port=port)
