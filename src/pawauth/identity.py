# Identity collaborators: user lookup and browser session resolution.
# Created: 2026-03-04
#
# Account management, passwords and session cookies live outside this
# service. The authorization server only needs to read users and their
# organization memberships, and to learn who is signed in for a request.

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from fastapi import Request

logger = logging.getLogger(__name__)


@dataclass
class OrgMembership:
    """A user's membership in one organization."""

    id: str
    name: str
    slug: str
    role: str = "member"


@dataclass
class User:
    id: str
    username: str
    email: str
    role: str = "user"
    organizations: list[OrgMembership] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class IdentityStore(Protocol):
    """Read-only view of the user directory."""

    def get_user(self, user_id: str) -> User | None: ...

    def get_user_organizations_with_roles(self, user_id: str) -> list[OrgMembership]: ...


class SessionProvider(Protocol):
    """Resolves the signed-in user of a browser request."""

    def get_current_user(self, request: Request) -> User | None: ...


class InMemoryIdentityStore:
    """Dictionary-backed identity store, optionally seeded from JSON.

    The seed file looks like::

        {"users": [{"id": "1", "username": "alice", "email": "a@example.com",
                    "role": "admin",
                    "organizations": [{"id": "7", "name": "Acme",
                                       "slug": "acme", "role": "owner"}]}]}
    """

    def __init__(self, users: list[User] | None = None):
        self._users: dict[str, User] = {}
        for user in users or []:
            self.add_user(user)

    @classmethod
    def from_file(cls, path: Path) -> InMemoryIdentityStore:
        data = json.loads(Path(path).read_text())
        users = []
        for entry in data.get("users", []):
            orgs = [
                OrgMembership(
                    id=str(o["id"]),
                    name=o["name"],
                    slug=o["slug"],
                    role=o.get("role", "member"),
                )
                for o in entry.get("organizations", [])
            ]
            users.append(
                User(
                    id=str(entry["id"]),
                    username=entry["username"],
                    email=entry.get("email", ""),
                    role=entry.get("role", "user"),
                    organizations=orgs,
                )
            )
        logger.info("Loaded %d users from %s", len(users), path)
        return cls(users)

    def add_user(self, user: User) -> None:
        self._users[user.id] = user

    def add_membership(self, user_id: str, membership: OrgMembership) -> None:
        self._users[user_id].organizations.append(membership)

    def get_user(self, user_id: str) -> User | None:
        return self._users.get(user_id)

    def get_user_organizations_with_roles(self, user_id: str) -> list[OrgMembership]:
        user = self._users.get(user_id)
        return list(user.organizations) if user else []


class HeaderSessionProvider:
    """Trusts a user-id header set by the login front end in front of this service."""

    def __init__(self, identity: IdentityStore, header_name: str = "X-Authenticated-User"):
        self.identity = identity
        self.header_name = header_name

    def get_current_user(self, request: Request) -> User | None:
        user_id = request.headers.get(self.header_name, "").strip()
        if not user_id:
            return None
        return self.identity.get_user(user_id)
