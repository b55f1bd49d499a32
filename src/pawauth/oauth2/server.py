# OAuth2 Authorization Server facade.
# Created: 2026-03-05
#
# Ties the client registry, code engine and token engine together into the
# authorize / consent / token / userinfo operations. HTTP shaping lives in
# pawauth.api.v1.oauth2; this module only returns data or raises OAuthError.

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any
from urllib.parse import urlencode

from pawauth.identity import IdentityStore, User
from pawauth.oauth2.clients import ClientRegistry
from pawauth.oauth2.codes import CODE_TTL, AuthorizationCodeEngine, AuthorizeRequest
from pawauth.oauth2.errors import InvalidToken, LoginRequired, UnsupportedGrantType
from pawauth.oauth2.models import OAuthClient, Scope, TokenGrant
from pawauth.oauth2.storage import OAuthStorage
from pawauth.oauth2.tokens import ACCESS_TOKEN_TTL, REFRESH_TOKEN_TTL, TokenEngine
from pawauth.security.audit import AuditLogger

logger = logging.getLogger(__name__)


def build_redirect(base: str, params: dict[str, str]) -> str:
    """Append query *params* to *base*, dropping empty values."""
    query = urlencode({k: v for k, v in params.items() if v})
    if not query:
        return base
    return f"{base}{'&' if '?' in base else '?'}{query}"


@dataclass
class AuthorizationResult:
    """What GET /oauth/authorize should do: redirect somewhere or ask for consent."""

    redirect_to: str | None = None
    consent: dict[str, Any] | None = None


class AuthorizationServer:
    """OAuth2 authorization server for the authorization-code grant with PKCE."""

    def __init__(
        self,
        storage: OAuthStorage,
        identity: IdentityStore,
        audit: AuditLogger | None = None,
        login_url: str = "/login",
        code_ttl: timedelta = CODE_TTL,
        access_token_ttl: timedelta = ACCESS_TOKEN_TTL,
        refresh_token_ttl: timedelta = REFRESH_TOKEN_TTL,
    ):
        self.storage = storage
        self.identity = identity
        self.audit = audit or AuditLogger()
        self.login_url = login_url
        self.clients = ClientRegistry(storage)
        self.codes = AuthorizationCodeEngine(storage, self.clients, code_ttl=code_ttl)
        self.tokens = TokenEngine(
            storage,
            self.codes,
            access_token_ttl=access_token_ttl,
            refresh_token_ttl=refresh_token_ttl,
        )

    # -- authorize ----------------------------------------------------------

    def authorize(self, req: AuthorizeRequest, user: User | None) -> AuthorizationResult:
        """Handle an inbound authorization request.

        Anonymous users are sent to the login page with the request preserved,
        trusted clients get a code straight away, everyone else gets the
        consent payload.
        """
        client = self.codes.validate_authorization_request(req)

        if user is None:
            return AuthorizationResult(redirect_to=self._login_redirect(req))

        if client.trusted:
            return AuthorizationResult(redirect_to=self._issue_redirect(user, client, req))

        return AuthorizationResult(consent=self._consent_payload(client, req, user))

    def decide(self, req: AuthorizeRequest, authorized: bool, user: User | None) -> str:
        """Apply the user's consent decision and return the client redirect URL."""
        if user is None:
            raise LoginRequired("sign in before answering a consent request")

        client = self.codes.validate_authorization_request(req)

        if not authorized:
            self.audit.log_oauth_event(
                "oauth_consent", actor=user.id, target=f"client:{client.client_id}",
                status="denied",
            )
            return build_redirect(
                req.redirect_uri, {"error": "access_denied", "state": req.state}
            )

        return self._issue_redirect(user, client, req)

    def _issue_redirect(self, user: User, client: OAuthClient, req: AuthorizeRequest) -> str:
        code = self.codes.issue(user.id, client, req)
        self.audit.log_oauth_event(
            "oauth_code_issued", actor=user.id, target=f"client:{client.client_id}",
            trusted=client.trusted,
        )
        return build_redirect(req.redirect_uri, {"code": code, "state": req.state})

    def _login_redirect(self, req: AuthorizeRequest) -> str:
        params = {
            "oauth_redirect": "true",
            "client_id": req.client_id,
            "redirect_uri": req.redirect_uri,
            "scope": req.scope,
            "state": req.state,
            "response_type": req.response_type,
        }
        if req.code_challenge:
            params["code_challenge"] = req.code_challenge
            params["code_challenge_method"] = req.code_challenge_method
        return build_redirect(self.login_url, params)

    def _consent_payload(
        self, client: OAuthClient, req: AuthorizeRequest, user: User
    ) -> dict[str, Any]:
        vocabulary = {s.name: s for s in self.storage.list_scopes()}
        requested = [
            {"name": name, "description": vocabulary[name].description}
            for name in req.scope.split()
            if name in vocabulary
        ]
        return {
            "client_name": client.client_name,
            "client_id": client.client_id,
            "redirect_uri": req.redirect_uri,
            "scope": req.scope,
            "scopes": requested,
            "state": req.state,
            "response_type": req.response_type,
            "code_challenge": req.code_challenge,
            "code_challenge_method": req.code_challenge_method,
            "user": {"id": user.id, "username": user.username, "email": user.email},
        }

    # -- token ----------------------------------------------------------------

    def token(
        self,
        grant_type: str,
        client_id: str = "",
        code: str = "",
        redirect_uri: str = "",
        client_secret: str = "",
        code_verifier: str = "",
        refresh_token: str = "",
    ) -> TokenGrant:
        """Dispatch a token request on *grant_type*."""
        if grant_type == "authorization_code":
            grant = self.tokens.exchange_code_for_token(
                code=code,
                redirect_uri=redirect_uri,
                client_id=client_id,
                client_secret=client_secret or None,
                code_verifier=code_verifier or None,
            )
        elif grant_type == "refresh_token":
            grant = self.tokens.refresh(refresh_token, client_id)
        else:
            raise UnsupportedGrantType(f"unsupported grant_type: {grant_type or '(missing)'}")

        self.audit.log_oauth_event(
            "oauth_token", actor=client_id, target=f"client:{client_id}",
            grant_type=grant_type, scope=" ".join(grant.scopes),
        )
        return grant

    def revoke(self, token: str, client_id: str | None = None) -> bool:
        revoked = self.tokens.revoke(token, client_id)
        if revoked:
            self.audit.log_oauth_event(
                "oauth_revoke", actor=client_id or "", target=f"client:{client_id or ''}"
            )
        return revoked

    # -- userinfo ------------------------------------------------------------

    def userinfo(self, access_token: str) -> dict[str, Any]:
        """Describe the token's user, limited to what the granted scopes unlock."""
        record = self.tokens.validate_access_token(access_token)
        user = self.identity.get_user(record.user_id)
        if user is None:
            raise InvalidToken("token subject no longer exists")

        info: dict[str, Any] = {"sub": user.id}
        for scope in record.scopes:
            if scope == "profile":
                info["username"] = user.username
                info["email"] = user.email
            elif scope == "read":
                info["id"] = user.id
                info["role"] = user.role
                orgs = self.identity.get_user_organizations_with_roles(user.id)
                if orgs:
                    info["organizations"] = [
                        {"id": o.id, "name": o.name, "slug": o.slug, "role": o.role}
                        for o in orgs
                    ]
        return info

    def list_scopes(self) -> list[Scope]:
        return self.storage.list_scopes()
