# Authorization code engine.
# Created: 2026-03-03
#
# A code is Issued until it is either Consumed (used flag set, terminal) or
# Expired (derived from expires_at at read time, never stored).

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from pawauth.oauth2 import credentials, pkce
from pawauth.oauth2.clients import ClientRegistry
from pawauth.oauth2.errors import InvalidGrant, InvalidRequest
from pawauth.oauth2.models import AuthorizationCode, OAuthClient, utcnow
from pawauth.oauth2.scopes import negotiate
from pawauth.oauth2.storage import OAuthStorage

logger = logging.getLogger(__name__)

CODE_TTL = timedelta(minutes=10)


@dataclass
class AuthorizeRequest:
    """Parameters of an authorization request (query string or consent body)."""

    response_type: str
    client_id: str
    redirect_uri: str
    scope: str = ""
    state: str = ""
    code_challenge: str = ""
    code_challenge_method: str = ""


class AuthorizationCodeEngine:
    """Issues and redeems single-use authorization codes."""

    def __init__(
        self,
        storage: OAuthStorage,
        clients: ClientRegistry,
        code_ttl: timedelta = CODE_TTL,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage
        self.clients = clients
        self.code_ttl = code_ttl
        self.clock = clock

    def validate_authorization_request(self, req: AuthorizeRequest) -> OAuthClient:
        """Check response_type, client, redirect_uri and PKCE method.

        Returns the active client or raises InvalidRequest.
        """
        if req.response_type != "code":
            raise InvalidRequest(f"unsupported response_type: {req.response_type}")
        if not req.client_id:
            raise InvalidRequest("client_id is required")
        if not req.redirect_uri:
            raise InvalidRequest("redirect_uri is required")

        client = self.clients.lookup_active(req.client_id)
        if client is None:
            raise InvalidRequest("invalid or inactive client_id")
        if not client.allows_redirect(req.redirect_uri):
            raise InvalidRequest("invalid redirect_uri")

        if req.code_challenge and not pkce.is_supported_method(req.code_challenge_method):
            raise InvalidRequest(
                f"unsupported code_challenge_method: {req.code_challenge_method}"
            )
        return client

    def issue(self, user_id: str, client: OAuthClient, req: AuthorizeRequest) -> str:
        """Store a new code for *user_id* and return its value."""
        now = self.clock()
        auth_code = AuthorizationCode(
            code=credentials.generate_authorization_code(),
            client_id=client.client_id,
            user_id=user_id,
            redirect_uri=req.redirect_uri,
            scopes=negotiate(req.scope, client.allowed_scopes),
            expires_at=now + self.code_ttl,
            code_challenge=req.code_challenge,
            code_challenge_method=req.code_challenge_method if req.code_challenge else "",
            created_at=now,
        )
        self.storage.insert_code(auth_code)
        logger.debug(
            "Issued authorization code for client=%s user=%s scopes=%s",
            client.client_id,
            user_id,
            auth_code.scopes,
        )
        return auth_code.code

    def redeem(self, code: str, client_id: str, redirect_uri: str) -> AuthorizationCode:
        """Consume *code* exactly once.

        The unused-lookup and the used-flip share one transaction, and the
        flip is conditional on ``used = 0``; of two racing callers exactly one
        gets the record, the other gets InvalidGrant. When called inside an
        outer ``storage.transaction()`` the flip is rolled back with it.
        """
        with self.storage.transaction():
            auth_code = self.storage.find_unused_code(code)
            if auth_code is None:
                raise InvalidGrant("invalid or already used authorization code")
            if auth_code.is_expired(self.clock()):
                raise InvalidGrant("authorization code expired")
            if auth_code.client_id != client_id:
                raise InvalidGrant("client_id mismatch")
            if auth_code.redirect_uri != redirect_uri:
                raise InvalidGrant("redirect_uri mismatch")
            if not self.storage.mark_code_used(code):
                raise InvalidGrant("authorization code already used")
            auth_code.used = True
        return auth_code
