# PKCE (RFC 7636) challenge verification.
# Created: 2026-03-02

from __future__ import annotations

import base64
import hashlib
import hmac

SUPPORTED_METHODS = ("plain", "S256")


def s256_challenge(verifier: str) -> str:
    """BASE64URL(SHA256(verifier)) without padding."""
    digest = hashlib.sha256(verifier.encode()).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def is_supported_method(method: str | None) -> bool:
    return not method or method in SUPPORTED_METHODS


def verify(challenge: str, method: str | None, verifier: str) -> bool:
    """Check *verifier* against the stored *challenge*.

    An empty method means ``plain``. Unsupported methods never verify;
    they are rejected when the authorization request is validated.
    """
    if not method or method == "plain":
        expected = verifier
    elif method == "S256":
        expected = s256_challenge(verifier)
    else:
        return False
    return hmac.compare_digest(expected.encode(), challenge.encode())
