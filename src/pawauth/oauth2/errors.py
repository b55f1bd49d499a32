# OAuth2 error taxonomy.
# Created: 2026-03-02
#
# Every failure the authorization server reports maps to one of these
# exceptions. The API layer renders them as {"error", "error_description"}.

from __future__ import annotations


class OAuthError(Exception):
    """Base class for protocol-level failures."""

    error = "server_error"
    status_code = 400

    def __init__(self, description: str = ""):
        super().__init__(description or self.error)
        self.description = description

    def to_dict(self) -> dict[str, str]:
        body = {"error": self.error}
        if self.description:
            body["error_description"] = self.description
        return body


class InvalidRequest(OAuthError):
    error = "invalid_request"


class InvalidClient(OAuthError):
    error = "invalid_client"
    status_code = 401


class InvalidGrant(OAuthError):
    error = "invalid_grant"


class UnsupportedGrantType(OAuthError):
    error = "unsupported_grant_type"


class InvalidToken(OAuthError):
    error = "invalid_token"
    status_code = 401


class LoginRequired(OAuthError):
    error = "login_required"
    status_code = 401


class InsufficientPrivilege(OAuthError):
    error = "forbidden"
    status_code = 403


class ClientNotFound(OAuthError):
    error = "application_not_found"
    status_code = 404


class ClientIDConflict(OAuthError):
    error = "client_id_exists"
    status_code = 409


class ServerError(OAuthError):
    error = "server_error"
    status_code = 500
