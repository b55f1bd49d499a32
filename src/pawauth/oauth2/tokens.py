# Token engine: code exchange, refresh, validation and revocation.
# Created: 2026-03-03
#
# Refresh keeps the refresh token value and only rotates the access token.

from __future__ import annotations

import hmac
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from pawauth.oauth2 import credentials, pkce
from pawauth.oauth2.codes import AuthorizationCodeEngine
from pawauth.oauth2.errors import (
    InvalidClient,
    InvalidGrant,
    InvalidRequest,
    InvalidToken,
    UnsupportedGrantType,
)
from pawauth.oauth2.models import AccessToken, RefreshToken, TokenGrant, utcnow
from pawauth.oauth2.storage import OAuthStorage

logger = logging.getLogger(__name__)

# Token lifetimes
ACCESS_TOKEN_TTL = timedelta(hours=1)
REFRESH_TOKEN_TTL = timedelta(days=30)


class TokenEngine:
    """Mints, refreshes and validates bearer tokens."""

    def __init__(
        self,
        storage: OAuthStorage,
        codes: AuthorizationCodeEngine,
        access_token_ttl: timedelta = ACCESS_TOKEN_TTL,
        refresh_token_ttl: timedelta = REFRESH_TOKEN_TTL,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage
        self.codes = codes
        self.access_token_ttl = access_token_ttl
        self.refresh_token_ttl = refresh_token_ttl
        self.clock = clock

    @property
    def expires_in(self) -> int:
        return int(self.access_token_ttl.total_seconds())

    def _new_access_token(self, client_id: str, user_id: str, scopes: list[str]) -> AccessToken:
        now = self.clock()
        return AccessToken(
            token=credentials.generate_access_token(),
            client_id=client_id,
            user_id=user_id,
            scopes=list(scopes),
            expires_at=now + self.access_token_ttl,
            created_at=now,
        )

    def exchange_code_for_token(
        self,
        code: str,
        redirect_uri: str,
        client_id: str,
        client_secret: str | None = None,
        code_verifier: str | None = None,
        grant_type: str = "authorization_code",
    ) -> TokenGrant:
        """Redeem an authorization code for an access/refresh token pair.

        The client must be active. Redemption, PKCE and secret checks and
        token inserts run in one transaction: a failed check rolls back the
        used flag with everything else. A client that omits client_secret is
        treated as public.
        """
        if grant_type != "authorization_code":
            raise UnsupportedGrantType(f"unsupported grant_type: {grant_type}")
        if not code or not client_id:
            raise InvalidRequest("code and client_id are required")

        with self.storage.transaction():
            client = self.codes.clients.lookup_active(client_id)
            if client is None:
                raise InvalidClient("unknown or inactive client")
            auth_code = self.codes.redeem(code, client_id, redirect_uri or "")

            if auth_code.code_challenge:
                if not code_verifier:
                    raise InvalidGrant("code_verifier required for PKCE")
                if not pkce.verify(
                    auth_code.code_challenge, auth_code.code_challenge_method, code_verifier
                ):
                    raise InvalidGrant("invalid code_verifier")

            if client_secret and not hmac.compare_digest(
                client.client_secret.encode(), client_secret.encode()
            ):
                raise InvalidClient("invalid client_secret")

            access = self._new_access_token(client_id, auth_code.user_id, auth_code.scopes)
            refresh = RefreshToken(
                token=credentials.generate_refresh_token(),
                client_id=client_id,
                user_id=auth_code.user_id,
                access_token=access.token,
                expires_at=access.created_at + self.refresh_token_ttl,
                created_at=access.created_at,
            )
            self.storage.insert_access_token(access)
            self.storage.insert_refresh_token(refresh)

        logger.info("Issued tokens for client=%s user=%s", client_id, auth_code.user_id)
        return TokenGrant(
            access_token=access.token,
            refresh_token=refresh.token,
            expires_in=self.expires_in,
            scopes=access.scopes,
        )

    def refresh(
        self, refresh_token: str, client_id: str, grant_type: str = "refresh_token"
    ) -> TokenGrant:
        """Replace the access token tied to *refresh_token*.

        The old access token is revoked and the refresh token repointed in
        the same transaction; the refresh token value is returned unchanged.
        """
        if grant_type != "refresh_token":
            raise UnsupportedGrantType(f"unsupported grant_type: {grant_type}")
        if not refresh_token:
            raise InvalidRequest("refresh_token is required")

        with self.storage.transaction():
            record = self.storage.get_refresh_token(refresh_token)
            if record is None:
                raise InvalidGrant("invalid refresh token")
            if record.is_expired(self.clock()):
                raise InvalidGrant("refresh token expired")
            if record.client_id != client_id:
                raise InvalidGrant("client_id mismatch")
            if self.codes.clients.lookup_active(client_id) is None:
                raise InvalidClient("unknown or inactive client")

            old = self.storage.get_access_token(record.access_token)
            if old is None:
                raise InvalidGrant("associated access token not found")

            self.storage.revoke_access_token(old.token)
            new = self._new_access_token(record.client_id, record.user_id, old.scopes)
            self.storage.insert_access_token(new)
            if not self.storage.repoint_refresh_token(record.token, old.token, new.token):
                raise InvalidGrant("refresh token was used concurrently")

        logger.info("Refreshed access token for client=%s user=%s", client_id, record.user_id)
        return TokenGrant(
            access_token=new.token,
            refresh_token=record.token,
            expires_in=self.expires_in,
            scopes=new.scopes,
        )

    def validate_access_token(self, token: str) -> AccessToken:
        """Return the live token record; read-only."""
        record = self.storage.get_access_token(token) if token else None
        if record is None:
            raise InvalidToken("invalid access token")
        if record.revoked:
            raise InvalidToken("access token revoked")
        if record.is_expired(self.clock()):
            raise InvalidToken("access token expired")
        return record

    def revoke(self, token: str, client_id: str | None = None) -> bool:
        """Revoke an access token, or a refresh token and its live access token.

        Unknown tokens and tokens of another client are ignored (False).
        """
        with self.storage.transaction():
            access = self.storage.get_access_token(token)
            if access is not None:
                if client_id and access.client_id != client_id:
                    return False
                return self.storage.revoke_access_token(token)

            refresh = self.storage.get_refresh_token(token)
            if refresh is None or (client_id and refresh.client_id != client_id):
                return False
            self.storage.revoke_refresh_token(token)
            self.storage.revoke_access_token(refresh.access_token)
        logger.info("Revoked refresh token for client=%s", refresh.client_id)
        return True
