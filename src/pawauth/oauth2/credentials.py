# Credential generation for clients, codes and tokens.
# Created: 2026-03-02
#
# Secrets, codes and refresh tokens come from the OS CSPRNG via `secrets`.
# Client ids and access tokens only need uniqueness, so they are UUID4s.

from __future__ import annotations

import secrets
import uuid

_SECRET_BYTES = 32


def generate_client_id() -> str:
    return str(uuid.uuid4())


def generate_client_secret() -> str:
    return secrets.token_urlsafe(_SECRET_BYTES)


def generate_authorization_code() -> str:
    return secrets.token_urlsafe(_SECRET_BYTES)


def generate_access_token() -> str:
    return str(uuid.uuid4())


def generate_refresh_token() -> str:
    return secrets.token_urlsafe(_SECRET_BYTES)
