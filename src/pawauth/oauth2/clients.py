# Client registry: register, look up, update, toggle and delete OAuth clients.
# Created: 2026-03-03
#
# Client ids are immutable and unique across active and inactive clients.
# Deleting a client removes its codes and tokens in the same transaction.

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from pawauth.oauth2 import credentials
from pawauth.oauth2.errors import ClientIDConflict, ClientNotFound, InvalidRequest, OAuthError
from pawauth.oauth2.models import OAuthClient
from pawauth.oauth2.scopes import DEFAULT_SCOPE
from pawauth.oauth2.storage import OAuthStorage

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    """Outcome of a batch provisioning call."""

    created: list[OAuthClient] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)


class ClientRegistry:
    """CRUD for registered client applications."""

    def __init__(self, storage: OAuthStorage):
        self.storage = storage

    def _validate(
        self, name: str, redirect_uris: list[str], scopes: list[str] | None
    ) -> list[str]:
        if not isinstance(name, str) or not name.strip():
            raise InvalidRequest("name is required")
        if not isinstance(redirect_uris, list) or not redirect_uris:
            raise InvalidRequest("at least one non-empty redirect_uri is required")
        if any(not isinstance(uri, str) or not uri for uri in redirect_uris):
            raise InvalidRequest("at least one non-empty redirect_uri is required")

        if scopes is not None and not isinstance(scopes, list):
            raise InvalidRequest("scopes must be a list")
        scopes = list(dict.fromkeys(scopes or [])) or [DEFAULT_SCOPE]
        known = {s.name for s in self.storage.list_scopes()}
        invalid = [s for s in scopes if s not in known]
        if invalid:
            raise InvalidRequest(f"Invalid scopes: {' '.join(invalid)}")
        return scopes

    def register(
        self,
        name: str,
        redirect_uris: list[str],
        scopes: list[str] | None = None,
        description: str = "",
        website: str = "",
        trusted: bool = False,
        created_by: str = "",
    ) -> OAuthClient:
        """Register a client with generated credentials.

        The returned record includes the client secret.
        """
        return self._create(
            client_id=credentials.generate_client_id(),
            client_secret=credentials.generate_client_secret(),
            name=name,
            redirect_uris=redirect_uris,
            scopes=scopes,
            description=description,
            website=website,
            trusted=trusted,
            created_by=created_by,
        )

    def register_with_fixed_credentials(
        self,
        name: str,
        redirect_uris: list[str],
        client_id: str,
        client_secret: str,
        scopes: list[str] | None = None,
        description: str = "",
        website: str = "",
        trusted: bool = False,
        created_by: str = "",
    ) -> OAuthClient:
        """Register a client whose id and secret are supplied by the caller.

        Raises ClientIDConflict if *client_id* is already taken. Callers are
        responsible for checking that the requester may provision clients.
        """
        if not isinstance(client_id, str) or not isinstance(client_secret, str):
            raise InvalidRequest("client_id and client_secret must be strings")
        if not client_id or not client_secret:
            raise InvalidRequest("client_id and client_secret are required")
        if not isinstance(description, str) or not isinstance(website, str):
            raise InvalidRequest("description and website must be strings")
        if not isinstance(trusted, bool):
            raise InvalidRequest("trusted must be a boolean")
        return self._create(
            client_id=client_id,
            client_secret=client_secret,
            name=name,
            redirect_uris=redirect_uris,
            scopes=scopes,
            description=description,
            website=website,
            trusted=trusted,
            created_by=created_by,
        )

    def batch_register_with_fixed_credentials(
        self, requests: list[dict], created_by: str = ""
    ) -> BatchResult:
        """Provision several clients; failures are reported per item."""
        result = BatchResult()
        for index, req in enumerate(requests):
            try:
                client = self.register_with_fixed_credentials(
                    name=req.get("name", ""),
                    redirect_uris=req.get("redirect_uris"),
                    client_id=req.get("client_id", ""),
                    client_secret=req.get("client_secret", ""),
                    scopes=req.get("scopes"),
                    description=req.get("description", ""),
                    website=req.get("website", ""),
                    trusted=req.get("trusted", False),
                    created_by=created_by,
                )
            except ClientIDConflict as exc:
                error, description = "client_id_exists", exc.description
            except InvalidRequest as exc:
                error, description = "validation_error", exc.description
            except OAuthError as exc:
                error, description = "server_error", exc.description
            else:
                result.created.append(client)
                continue
            client_id = req.get("client_id", "")
            result.errors.append(
                {
                    "index": index,
                    "client_id": client_id if isinstance(client_id, str) else "",
                    "error": error,
                    "error_description": description,
                }
            )
        return result

    def _create(
        self,
        client_id: str,
        client_secret: str,
        name: str,
        redirect_uris: list[str],
        scopes: list[str] | None,
        description: str,
        website: str,
        trusted: bool,
        created_by: str,
    ) -> OAuthClient:
        with self.storage.transaction():
            scopes = self._validate(name, redirect_uris, scopes)
            if self.storage.get_client(client_id) is not None:
                raise ClientIDConflict("The specified client_id already exists")
            client = OAuthClient(
                client_id=client_id,
                client_name=name.strip(),
                client_secret=client_secret,
                redirect_uris=list(redirect_uris),
                allowed_scopes=scopes,
                description=description,
                website=website,
                trusted=trusted,
                created_by=created_by,
            )
            self.storage.insert_client(client)
        logger.info("Registered OAuth client %s (%s)", client.client_id, client.client_name)
        return client

    def lookup_active(self, client_id: str) -> OAuthClient | None:
        """Return the client if it exists and is active; inactive clients look absent."""
        client = self.storage.get_client(client_id)
        if client is None or not client.active:
            return None
        return client

    def get(self, client_id: str) -> OAuthClient:
        client = self.storage.get_client(client_id)
        if client is None:
            raise ClientNotFound(f"no application with client_id {client_id}")
        return client

    def list(self, active_only: bool = False) -> list[OAuthClient]:
        return self.storage.list_clients(active_only=active_only)

    def update(
        self,
        client_id: str,
        name: str,
        redirect_uris: list[str],
        scopes: list[str] | None = None,
        description: str = "",
        website: str = "",
        trusted: bool = False,
    ) -> OAuthClient:
        with self.storage.transaction():
            client = self.get(client_id)
            client.allowed_scopes = self._validate(name, redirect_uris, scopes)
            client.client_name = name.strip()
            client.redirect_uris = list(redirect_uris)
            client.description = description
            client.website = website
            client.trusted = trusted
            self.storage.update_client(client)
        return client

    def delete(self, client_id: str) -> None:
        """Delete a client and, atomically, all of its codes and tokens."""
        if not self.storage.delete_client(client_id):
            raise ClientNotFound(f"no application with client_id {client_id}")
        logger.info("Deleted OAuth client %s", client_id)

    def toggle_active(self, client_id: str) -> OAuthClient:
        with self.storage.transaction():
            client = self.get(client_id)
            client.active = not client.active
            self.storage.update_client(client)
        return client

    def toggle_trusted(self, client_id: str) -> OAuthClient:
        with self.storage.transaction():
            client = self.get(client_id)
            client.trusted = not client.trusted
            self.storage.update_client(client)
        return client
