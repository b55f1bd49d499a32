# Tests for the authorization code engine, token engine and server facade.
# Created: 2026-03-05

import base64
import hashlib
import secrets
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest

from pawauth.identity import InMemoryIdentityStore, OrgMembership, User
from pawauth.oauth2.codes import AuthorizeRequest
from pawauth.oauth2.errors import (
    InvalidClient,
    InvalidGrant,
    InvalidRequest,
    InvalidToken,
    LoginRequired,
    UnsupportedGrantType,
)
from pawauth.oauth2.server import AuthorizationServer, build_redirect
from pawauth.oauth2.storage import OAuthStorage

REDIRECT = "https://app.example.com/cb"


def _make_pkce_pair():
    """Generate a PKCE code_verifier and code_challenge pair."""
    verifier = secrets.token_urlsafe(32)
    challenge = (
        base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest())
        .rstrip(b"=")
        .decode()
    )
    return verifier, challenge


def _query(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


@pytest.fixture
def storage(tmp_path):
    store = OAuthStorage(tmp_path / "oauth.db")
    yield store
    store.close()


@pytest.fixture
def identity():
    alice = User("u1", "alice", "alice@example.com", role="admin")
    alice.organizations.append(OrgMembership("o1", "Acme", "acme", "owner"))
    return InMemoryIdentityStore([alice, User("u2", "bob", "bob@example.com")])


@pytest.fixture
def alice(identity):
    return identity.get_user("u1")


@pytest.fixture
def server(storage, identity):
    return AuthorizationServer(storage, identity, login_url="https://id.example.com/login")


@pytest.fixture
def trusted_client(server):
    return server.clients.register(
        "Trusted", [REDIRECT], scopes=["read", "profile"], trusted=True
    )


@pytest.fixture
def untrusted_client(server):
    return server.clients.register("Untrusted", [REDIRECT], scopes=["read", "profile"])


def _request(client, **overrides):
    params = {
        "response_type": "code",
        "client_id": client.client_id,
        "redirect_uri": REDIRECT,
        "scope": "read",
        "state": "xyz",
    }
    params.update(overrides)
    return AuthorizeRequest(**params)


def _code_for(server, user, client, **overrides) -> str:
    result = server.authorize(_request(client, **overrides), user)
    return _query(result.redirect_to)["code"]


class TestAuthorizationRequestValidation:
    def test_rejects_wrong_response_type(self, server, trusted_client, alice):
        with pytest.raises(InvalidRequest):
            server.authorize(_request(trusted_client, response_type="token"), alice)

    def test_rejects_unknown_client(self, server, alice):
        req = AuthorizeRequest("code", "no-such-client", REDIRECT)
        with pytest.raises(InvalidRequest):
            server.authorize(req, alice)

    def test_rejects_inactive_client(self, server, trusted_client, alice):
        server.clients.toggle_active(trusted_client.client_id)
        with pytest.raises(InvalidRequest):
            server.authorize(_request(trusted_client), alice)

    @pytest.mark.parametrize(
        "uri",
        [
            "https://app.example.com/cb/",
            "https://app.example.com/cb?x=1",
            "https://app.example.com/c",
            "HTTPS://APP.EXAMPLE.COM/cb",
        ],
    )
    def test_redirect_uri_must_match_exactly(self, server, trusted_client, alice, uri):
        with pytest.raises(InvalidRequest):
            server.authorize(_request(trusted_client, redirect_uri=uri), alice)

    def test_rejects_unsupported_pkce_method(self, server, trusted_client, alice):
        req = _request(trusted_client, code_challenge="abc", code_challenge_method="S512")
        with pytest.raises(InvalidRequest):
            server.authorize(req, alice)

    def test_validation_happens_before_login_redirect(self, server):
        req = AuthorizeRequest("code", "no-such-client", REDIRECT)
        with pytest.raises(InvalidRequest):
            server.authorize(req, None)


class TestAuthorize:
    def test_anonymous_user_is_sent_to_login(self, server, untrusted_client):
        _, challenge = _make_pkce_pair()
        req = _request(untrusted_client, code_challenge=challenge, code_challenge_method="S256")
        result = server.authorize(req, None)

        assert result.consent is None
        assert result.redirect_to.startswith("https://id.example.com/login?")
        params = _query(result.redirect_to)
        assert params["oauth_redirect"] == "true"
        assert params["client_id"] == untrusted_client.client_id
        assert params["redirect_uri"] == REDIRECT
        assert params["state"] == "xyz"
        assert params["code_challenge"] == challenge
        assert params["code_challenge_method"] == "S256"

    def test_trusted_client_gets_code_without_consent(self, server, trusted_client, alice):
        result = server.authorize(_request(trusted_client), alice)
        assert result.consent is None
        assert result.redirect_to.startswith(REDIRECT + "?")
        params = _query(result.redirect_to)
        assert params["code"]
        assert params["state"] == "xyz"

    def test_untrusted_client_gets_consent_payload(self, server, untrusted_client, alice):
        result = server.authorize(_request(untrusted_client, scope="read profile"), alice)
        assert result.redirect_to is None
        consent = result.consent
        assert consent["client_name"] == "Untrusted"
        assert consent["client_id"] == untrusted_client.client_id
        assert [s["name"] for s in consent["scopes"]] == ["read", "profile"]
        assert consent["user"] == {
            "id": "u1",
            "username": "alice",
            "email": "alice@example.com",
        }
        assert untrusted_client.client_secret not in str(consent)

    def test_decide_approve_issues_code(self, server, untrusted_client, alice):
        url = server.decide(_request(untrusted_client), True, alice)
        params = _query(url)
        assert params["code"]
        assert params["state"] == "xyz"

    def test_decide_deny_redirects_with_access_denied(self, server, untrusted_client, alice):
        url = server.decide(_request(untrusted_client), False, alice)
        assert url == f"{REDIRECT}?error=access_denied&state=xyz"

    def test_decide_deny_still_validates_redirect(self, server, untrusted_client, alice):
        req = _request(untrusted_client, redirect_uri="https://evil.example.com/cb")
        with pytest.raises(InvalidRequest):
            server.decide(req, False, alice)

    def test_decide_requires_login(self, server, untrusted_client):
        with pytest.raises(LoginRequired):
            server.decide(_request(untrusted_client), True, None)

    def test_build_redirect_keeps_existing_query(self):
        assert build_redirect("https://a/cb?x=1", {"code": "c", "state": ""}) == (
            "https://a/cb?x=1&code=c"
        )


class TestCodeRedemption:
    def test_exchange_returns_token_pair(self, server, trusted_client, alice):
        code = _code_for(server, alice, trusted_client, scope="read profile admin")
        grant = server.token("authorization_code", trusted_client.client_id, code, REDIRECT)

        assert grant.access_token
        assert grant.refresh_token
        assert grant.token_type == "Bearer"
        assert grant.expires_in == 3600
        assert grant.scopes == ["read", "profile"]
        body = grant.to_dict()
        assert body["scope"] == "read profile"

    def test_second_redemption_fails(self, server, trusted_client, alice):
        code = _code_for(server, alice, trusted_client)
        server.token("authorization_code", trusted_client.client_id, code, REDIRECT)
        with pytest.raises(InvalidGrant):
            server.token("authorization_code", trusted_client.client_id, code, REDIRECT)

    def test_concurrent_redemption_succeeds_once(self, server, trusted_client, alice):
        code = _code_for(server, alice, trusted_client)
        barrier = threading.Barrier(8)

        def attempt(_):
            barrier.wait()
            try:
                server.tokens.exchange_code_for_token(code, REDIRECT, trusted_client.client_id)
            except InvalidGrant:
                return False
            return True

        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(pool.map(attempt, range(8)))

        assert outcomes.count(True) == 1
        assert outcomes.count(False) == 7

    def test_expired_code_fails(self, storage, identity, alice):
        server = AuthorizationServer(storage, identity, code_ttl=timedelta(seconds=-1))
        client = server.clients.register("App", [REDIRECT], trusted=True)
        code = _code_for(server, alice, client)
        with pytest.raises(InvalidGrant, match="expired"):
            server.token("authorization_code", client.client_id, code, REDIRECT)

    def test_expired_code_fails_even_if_never_used(self, storage, identity, alice):
        server = AuthorizationServer(storage, identity, code_ttl=timedelta(seconds=-1))
        client = server.clients.register("App", [REDIRECT], trusted=True)
        code = _code_for(server, alice, client)
        for _ in range(2):
            with pytest.raises(InvalidGrant):
                server.codes.redeem(code, client.client_id, REDIRECT)

    def test_redirect_mismatch_fails(self, server, trusted_client, alice):
        code = _code_for(server, alice, trusted_client)
        with pytest.raises(InvalidGrant, match="redirect_uri"):
            server.token(
                "authorization_code", trusted_client.client_id, code, "https://other/cb"
            )

    def test_client_mismatch_fails(self, server, trusted_client, alice):
        other = server.clients.register("Other", [REDIRECT], trusted=True)
        code = _code_for(server, alice, trusted_client)
        with pytest.raises(InvalidGrant, match="client_id"):
            server.token("authorization_code", other.client_id, code, REDIRECT)

    def test_wrong_secret_is_invalid_client(self, server, trusted_client, alice):
        code = _code_for(server, alice, trusted_client)
        with pytest.raises(InvalidClient):
            server.token(
                "authorization_code", trusted_client.client_id, code, REDIRECT,
                client_secret="wrong",
            )

    def test_correct_secret_is_accepted(self, server, trusted_client, alice):
        code = _code_for(server, alice, trusted_client)
        grant = server.token(
            "authorization_code", trusted_client.client_id, code, REDIRECT,
            client_secret=trusted_client.client_secret,
        )
        assert grant.access_token

    def test_failed_secret_check_does_not_burn_code(self, server, trusted_client, alice):
        code = _code_for(server, alice, trusted_client)
        with pytest.raises(InvalidClient):
            server.token(
                "authorization_code", trusted_client.client_id, code, REDIRECT,
                client_secret="wrong",
            )
        grant = server.token("authorization_code", trusted_client.client_id, code, REDIRECT)
        assert grant.access_token

    def test_deactivated_client_cannot_exchange(self, server, trusted_client, alice):
        code = _code_for(server, alice, trusted_client)
        server.clients.toggle_active(trusted_client.client_id)
        with pytest.raises(InvalidClient):
            server.token("authorization_code", trusted_client.client_id, code, REDIRECT)

        # Reactivating the client makes the untouched code usable again.
        server.clients.toggle_active(trusted_client.client_id)
        grant = server.token("authorization_code", trusted_client.client_id, code, REDIRECT)
        assert grant.access_token

    def test_missing_code_is_invalid_request(self, server, trusted_client):
        with pytest.raises(InvalidRequest):
            server.token("authorization_code", trusted_client.client_id, "", REDIRECT)

    @pytest.mark.parametrize("grant_type", ["password", "client_credentials", ""])
    def test_unsupported_grant_type(self, server, trusted_client, grant_type):
        with pytest.raises(UnsupportedGrantType):
            server.token(grant_type, trusted_client.client_id)


class TestPKCEExchange:
    def test_s256_verifier123(self, server, trusted_client, alice):
        challenge = (
            base64.urlsafe_b64encode(hashlib.sha256(b"verifier123").digest())
            .rstrip(b"=")
            .decode()
        )
        code = _code_for(
            server, alice, trusted_client, code_challenge=challenge, code_challenge_method="S256"
        )
        grant = server.token(
            "authorization_code", trusted_client.client_id, code, REDIRECT,
            code_verifier="verifier123",
        )
        assert grant.access_token

    def test_s256_wrong_verifier(self, server, trusted_client, alice):
        _, challenge = _make_pkce_pair()
        code = _code_for(
            server, alice, trusted_client, code_challenge=challenge, code_challenge_method="S256"
        )
        with pytest.raises(InvalidGrant):
            server.token(
                "authorization_code", trusted_client.client_id, code, REDIRECT,
                code_verifier="verifier123",
            )

    def test_verifier_required_when_challenge_present(self, server, trusted_client, alice):
        _, challenge = _make_pkce_pair()
        code = _code_for(
            server, alice, trusted_client, code_challenge=challenge, code_challenge_method="S256"
        )
        with pytest.raises(InvalidGrant, match="code_verifier"):
            server.token("authorization_code", trusted_client.client_id, code, REDIRECT)

    def test_plain_method(self, server, trusted_client, alice):
        code = _code_for(
            server, alice, trusted_client, code_challenge="plain-verifier",
            code_challenge_method="plain",
        )
        grant = server.token(
            "authorization_code", trusted_client.client_id, code, REDIRECT,
            code_verifier="plain-verifier",
        )
        assert grant.access_token

    def test_failed_pkce_does_not_burn_code(self, server, trusted_client, alice):
        verifier, challenge = _make_pkce_pair()
        code = _code_for(
            server, alice, trusted_client, code_challenge=challenge, code_challenge_method="S256"
        )
        with pytest.raises(InvalidGrant):
            server.token(
                "authorization_code", trusted_client.client_id, code, REDIRECT,
                code_verifier="nope",
            )
        grant = server.token(
            "authorization_code", trusted_client.client_id, code, REDIRECT,
            code_verifier=verifier,
        )
        assert grant.access_token


class TestRefresh:
    def test_refresh_rotates_access_token_only(self, server, trusted_client, alice):
        code = _code_for(server, alice, trusted_client, scope="read profile")
        first = server.token("authorization_code", trusted_client.client_id, code, REDIRECT)

        second = server.token(
            "refresh_token", trusted_client.client_id, refresh_token=first.refresh_token
        )

        assert second.access_token != first.access_token
        assert second.refresh_token == first.refresh_token
        assert second.scopes == ["read", "profile"]
        with pytest.raises(InvalidToken, match="revoked"):
            server.tokens.validate_access_token(first.access_token)
        assert server.tokens.validate_access_token(second.access_token).user_id == "u1"

    def test_refresh_can_repeat(self, server, trusted_client, alice):
        code = _code_for(server, alice, trusted_client)
        grant = server.token("authorization_code", trusted_client.client_id, code, REDIRECT)
        seen = {grant.access_token}
        for _ in range(3):
            grant = server.token(
                "refresh_token", trusted_client.client_id, refresh_token=grant.refresh_token
            )
            seen.add(grant.access_token)
        assert len(seen) == 4

    def test_refresh_unknown_token(self, server, trusted_client):
        with pytest.raises(InvalidGrant):
            server.token("refresh_token", trusted_client.client_id, refresh_token="bogus")

    def test_refresh_client_mismatch(self, server, trusted_client, alice):
        other = server.clients.register("Other", [REDIRECT], trusted=True)
        code = _code_for(server, alice, trusted_client)
        grant = server.token("authorization_code", trusted_client.client_id, code, REDIRECT)
        with pytest.raises(InvalidGrant):
            server.token("refresh_token", other.client_id, refresh_token=grant.refresh_token)

    def test_deactivated_client_cannot_refresh(self, server, trusted_client, alice):
        code = _code_for(server, alice, trusted_client)
        grant = server.token("authorization_code", trusted_client.client_id, code, REDIRECT)
        server.clients.toggle_active(trusted_client.client_id)

        with pytest.raises(InvalidClient):
            server.token(
                "refresh_token", trusted_client.client_id, refresh_token=grant.refresh_token
            )
        assert server.tokens.validate_access_token(grant.access_token).client_id == (
            trusted_client.client_id
        )

    def test_refresh_expired(self, storage, identity, alice):
        server = AuthorizationServer(
            storage, identity, refresh_token_ttl=timedelta(seconds=-1)
        )
        client = server.clients.register("App", [REDIRECT], trusted=True)
        code = _code_for(server, alice, client)
        grant = server.token("authorization_code", client.client_id, code, REDIRECT)
        with pytest.raises(InvalidGrant, match="expired"):
            server.token("refresh_token", client.client_id, refresh_token=grant.refresh_token)

    def test_refresh_missing_value(self, server, trusted_client):
        with pytest.raises(InvalidRequest):
            server.token("refresh_token", trusted_client.client_id)


class TestValidationAndRevocation:
    def test_expired_access_token(self, storage, identity, alice):
        server = AuthorizationServer(storage, identity, access_token_ttl=timedelta(seconds=-1))
        client = server.clients.register("App", [REDIRECT], trusted=True)
        code = _code_for(server, alice, client)
        grant = server.token("authorization_code", client.client_id, code, REDIRECT)
        with pytest.raises(InvalidToken, match="expired"):
            server.tokens.validate_access_token(grant.access_token)

    def test_unknown_access_token(self, server):
        with pytest.raises(InvalidToken):
            server.tokens.validate_access_token("nope")
        with pytest.raises(InvalidToken):
            server.tokens.validate_access_token("")

    def test_revoke_access_token(self, server, trusted_client, alice):
        code = _code_for(server, alice, trusted_client)
        grant = server.token("authorization_code", trusted_client.client_id, code, REDIRECT)
        assert server.revoke(grant.access_token) is True
        assert server.revoke(grant.access_token) is False
        with pytest.raises(InvalidToken):
            server.tokens.validate_access_token(grant.access_token)

    def test_revoke_refresh_token_kills_both(self, server, trusted_client, alice):
        code = _code_for(server, alice, trusted_client)
        grant = server.token("authorization_code", trusted_client.client_id, code, REDIRECT)
        assert server.revoke(grant.refresh_token, trusted_client.client_id) is True
        with pytest.raises(InvalidToken):
            server.tokens.validate_access_token(grant.access_token)
        with pytest.raises(InvalidGrant):
            server.token(
                "refresh_token", trusted_client.client_id, refresh_token=grant.refresh_token
            )

    def test_revoke_ignores_other_clients_tokens(self, server, trusted_client, alice):
        code = _code_for(server, alice, trusted_client)
        grant = server.token("authorization_code", trusted_client.client_id, code, REDIRECT)
        assert server.revoke(grant.access_token, "someone-else") is False
        assert server.tokens.validate_access_token(grant.access_token)


class TestUserinfo:
    def _token(self, server, client, user, scope):
        code = _code_for(server, user, client, scope=scope)
        return server.token("authorization_code", client.client_id, code, REDIRECT).access_token

    def test_read_scope(self, server, trusted_client, alice):
        info = server.userinfo(self._token(server, trusted_client, alice, "read"))
        assert info == {
            "sub": "u1",
            "id": "u1",
            "role": "admin",
            "organizations": [{"id": "o1", "name": "Acme", "slug": "acme", "role": "owner"}],
        }

    def test_profile_scope(self, server, trusted_client, alice):
        info = server.userinfo(self._token(server, trusted_client, alice, "profile"))
        assert info == {"sub": "u1", "username": "alice", "email": "alice@example.com"}

    def test_no_organizations_key_without_memberships(self, server, trusted_client, identity):
        bob = identity.get_user("u2")
        info = server.userinfo(self._token(server, trusted_client, bob, "read profile"))
        assert info["username"] == "bob"
        assert info["role"] == "user"
        assert "organizations" not in info

    def test_revoked_token(self, server, trusted_client, alice):
        token = self._token(server, trusted_client, alice, "read")
        server.revoke(token)
        with pytest.raises(InvalidToken):
            server.userinfo(token)
