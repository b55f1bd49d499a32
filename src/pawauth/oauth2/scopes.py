# Scope vocabulary and negotiation.
# Created: 2026-03-02

from __future__ import annotations

from pawauth.oauth2.models import Scope

DEFAULT_SCOPE = "read"

# Seeded into storage the first time the database is created
DEFAULT_SCOPES: tuple[Scope, ...] = (
    Scope("read", "Read access to basic user information", default=True),
    Scope("write", "Write access to user data"),
    Scope("admin", "Administrative access to all resources"),
    Scope("profile", "Access to user profile information", default=True),
    Scope("organizations", "Access to user organization information"),
)


def parse_scope(value: str | None) -> list[str]:
    """Split a space-delimited scope string, dropping duplicates in order."""
    seen: list[str] = []
    for name in (value or "").split():
        if name not in seen:
            seen.append(name)
    return seen


def negotiate(requested: str | None, allowed: str | list[str]) -> list[str]:
    """Return the granted scopes: requested ∩ allowed, in request order.

    An empty request falls back to ``read``. Scopes the client may not have
    are dropped rather than rejected.
    """
    wanted = parse_scope(requested) or [DEFAULT_SCOPE]
    permitted = set(parse_scope(allowed) if isinstance(allowed, str) else allowed)
    return [name for name in wanted if name in permitted]
