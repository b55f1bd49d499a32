# OAuth2 persistence on SQLite.
# Created: 2026-03-02
#
# One connection per storage handle, serialized by a re-entrant lock.
# Every public method runs inside ``transaction()``; callers that need
# several steps to be atomic (code redemption + token minting, client
# deletion cascade, refresh rotation) open an outer transaction and the
# inner calls join it. The outermost block uses BEGIN IMMEDIATE so the
# write lock is held from the first read.

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from pawauth.oauth2.errors import ClientIDConflict, ServerError
from pawauth.oauth2.models import (
    AccessToken,
    AuthorizationCode,
    OAuthClient,
    RefreshToken,
    Scope,
)
from pawauth.oauth2.scopes import DEFAULT_SCOPES

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS clients (
    client_id TEXT PRIMARY KEY,
    client_name TEXT NOT NULL,
    client_secret TEXT NOT NULL,
    redirect_uris TEXT NOT NULL,
    allowed_scopes TEXT NOT NULL DEFAULT 'read',
    description TEXT NOT NULL DEFAULT '',
    website TEXT NOT NULL DEFAULT '',
    trusted INTEGER NOT NULL DEFAULT 0,
    active INTEGER NOT NULL DEFAULT 1,
    created_by TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS authorization_codes (
    code TEXT PRIMARY KEY,
    client_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    redirect_uri TEXT NOT NULL,
    scopes TEXT NOT NULL DEFAULT '',
    expires_at TEXT NOT NULL,
    code_challenge TEXT NOT NULL DEFAULT '',
    code_challenge_method TEXT NOT NULL DEFAULT '',
    used INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS access_tokens (
    token TEXT PRIMARY KEY,
    client_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    scopes TEXT NOT NULL DEFAULT '',
    expires_at TEXT NOT NULL,
    revoked INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS refresh_tokens (
    token TEXT PRIMARY KEY,
    client_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    access_token TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    revoked INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS scopes (
    name TEXT PRIMARY KEY,
    description TEXT NOT NULL DEFAULT '',
    is_default INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_codes_client ON authorization_codes (client_id);
CREATE INDEX IF NOT EXISTS idx_access_client ON access_tokens (client_id);
CREATE INDEX IF NOT EXISTS idx_refresh_client ON refresh_tokens (client_id);
"""

# Deletion order for a client's dependents
_CASCADE_TABLES = ("authorization_codes", "access_tokens", "refresh_tokens")


def _ts(value: datetime) -> str:
    return value.isoformat()


def _dt(value: str) -> datetime:
    return datetime.fromisoformat(value)


class OAuthStorage:
    """SQLite-backed store for clients, codes, tokens and scopes.

    Pass ``":memory:"`` for a throwaway database.
    """

    def __init__(self, db_path: Path | str):
        if db_path != ":memory:":
            db_path = Path(db_path)
            db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db_path = db_path
        self._lock = threading.RLock()
        self._depth = 0
        try:
            self._conn = sqlite3.connect(
                str(db_path), check_same_thread=False, isolation_level=None
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(_SCHEMA)
        except sqlite3.Error as exc:
            raise ServerError(f"failed to open database: {exc}") from exc
        self._seed_scopes()

    # -- plumbing ---------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Run the enclosed block atomically; nested blocks join the outer one."""
        with self._lock:
            outermost = self._depth == 0
            if outermost:
                try:
                    self._conn.execute("BEGIN IMMEDIATE")
                except sqlite3.Error as exc:
                    raise ServerError(f"failed to begin transaction: {exc}") from exc
            self._depth += 1
            try:
                yield
            except sqlite3.Error as exc:
                self._depth -= 1
                if outermost:
                    self._rollback()
                raise ServerError(f"storage failure: {exc}") from exc
            except BaseException:
                self._depth -= 1
                if outermost:
                    self._rollback()
                raise
            else:
                self._depth -= 1
                if outermost:
                    try:
                        self._conn.execute("COMMIT")
                    except sqlite3.Error as exc:
                        self._rollback()
                        raise ServerError(f"failed to commit: {exc}") from exc

    def _rollback(self) -> None:
        try:
            self._conn.execute("ROLLBACK")
        except sqlite3.Error:
            logger.exception("Rollback failed")

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        return self._conn.execute(sql, params)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _seed_scopes(self) -> None:
        with self.transaction():
            count = self._execute("SELECT COUNT(*) FROM scopes").fetchone()[0]
            if count:
                return
            for scope in DEFAULT_SCOPES:
                self._execute(
                    "INSERT INTO scopes (name, description, is_default) VALUES (?, ?, ?)",
                    (scope.name, scope.description, int(scope.default)),
                )
            logger.debug("Seeded %d default OAuth scopes", len(DEFAULT_SCOPES))

    # -- scopes -----------------------------------------------------------

    def list_scopes(self) -> list[Scope]:
        with self.transaction():
            rows = self._execute(
                "SELECT name, description, is_default FROM scopes ORDER BY rowid"
            ).fetchall()
        return [Scope(r["name"], r["description"], bool(r["is_default"])) for r in rows]

    # -- clients ----------------------------------------------------------

    @staticmethod
    def _row_to_client(row: sqlite3.Row) -> OAuthClient:
        return OAuthClient(
            client_id=row["client_id"],
            client_name=row["client_name"],
            client_secret=row["client_secret"],
            redirect_uris=json.loads(row["redirect_uris"]),
            allowed_scopes=row["allowed_scopes"].split(),
            description=row["description"],
            website=row["website"],
            trusted=bool(row["trusted"]),
            active=bool(row["active"]),
            created_by=row["created_by"],
            created_at=_dt(row["created_at"]),
        )

    def insert_client(self, client: OAuthClient) -> None:
        with self.transaction():
            try:
                self._execute(
                    "INSERT INTO clients (client_id, client_name, client_secret, redirect_uris,"
                    " allowed_scopes, description, website, trusted, active, created_by,"
                    " created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        client.client_id,
                        client.client_name,
                        client.client_secret,
                        json.dumps(client.redirect_uris),
                        " ".join(client.allowed_scopes),
                        client.description,
                        client.website,
                        int(client.trusted),
                        int(client.active),
                        client.created_by,
                        _ts(client.created_at),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ClientIDConflict("The specified client_id already exists") from exc

    def get_client(self, client_id: str) -> OAuthClient | None:
        with self.transaction():
            row = self._execute(
                "SELECT * FROM clients WHERE client_id = ?", (client_id,)
            ).fetchone()
        return self._row_to_client(row) if row else None

    def list_clients(self, active_only: bool = False) -> list[OAuthClient]:
        sql = "SELECT * FROM clients"
        if active_only:
            sql += " WHERE active = 1"
        with self.transaction():
            rows = self._execute(sql + " ORDER BY created_at, rowid").fetchall()
        return [self._row_to_client(r) for r in rows]

    def update_client(self, client: OAuthClient) -> bool:
        with self.transaction():
            cur = self._execute(
                "UPDATE clients SET client_name = ?, redirect_uris = ?, allowed_scopes = ?,"
                " description = ?, website = ?, trusted = ?, active = ? WHERE client_id = ?",
                (
                    client.client_name,
                    json.dumps(client.redirect_uris),
                    " ".join(client.allowed_scopes),
                    client.description,
                    client.website,
                    int(client.trusted),
                    int(client.active),
                    client.client_id,
                ),
            )
        return cur.rowcount == 1

    def delete_client(self, client_id: str) -> bool:
        """Delete a client with its codes, access tokens and refresh tokens."""
        with self.transaction():
            for table in _CASCADE_TABLES:
                self._execute(f"DELETE FROM {table} WHERE client_id = ?", (client_id,))
            cur = self._execute("DELETE FROM clients WHERE client_id = ?", (client_id,))
        return cur.rowcount == 1

    # -- authorization codes ---------------------------------------------

    @staticmethod
    def _row_to_code(row: sqlite3.Row) -> AuthorizationCode:
        return AuthorizationCode(
            code=row["code"],
            client_id=row["client_id"],
            user_id=row["user_id"],
            redirect_uri=row["redirect_uri"],
            scopes=row["scopes"].split(),
            expires_at=_dt(row["expires_at"]),
            code_challenge=row["code_challenge"],
            code_challenge_method=row["code_challenge_method"],
            used=bool(row["used"]),
            created_at=_dt(row["created_at"]),
        )

    def insert_code(self, code: AuthorizationCode) -> None:
        with self.transaction():
            self._execute(
                "INSERT INTO authorization_codes (code, client_id, user_id, redirect_uri,"
                " scopes, expires_at, code_challenge, code_challenge_method, used, created_at)"
                " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    code.code,
                    code.client_id,
                    code.user_id,
                    code.redirect_uri,
                    " ".join(code.scopes),
                    _ts(code.expires_at),
                    code.code_challenge,
                    code.code_challenge_method,
                    int(code.used),
                    _ts(code.created_at),
                ),
            )

    def find_unused_code(self, code: str) -> AuthorizationCode | None:
        with self.transaction():
            row = self._execute(
                "SELECT * FROM authorization_codes WHERE code = ? AND used = 0", (code,)
            ).fetchone()
        return self._row_to_code(row) if row else None

    def mark_code_used(self, code: str) -> bool:
        """Flip ``used`` only if it is still unset. False means another caller won."""
        with self.transaction():
            cur = self._execute(
                "UPDATE authorization_codes SET used = 1 WHERE code = ? AND used = 0", (code,)
            )
        return cur.rowcount == 1

    # -- access tokens ----------------------------------------------------

    @staticmethod
    def _row_to_access(row: sqlite3.Row) -> AccessToken:
        return AccessToken(
            token=row["token"],
            client_id=row["client_id"],
            user_id=row["user_id"],
            scopes=row["scopes"].split(),
            expires_at=_dt(row["expires_at"]),
            revoked=bool(row["revoked"]),
            created_at=_dt(row["created_at"]),
        )

    def insert_access_token(self, token: AccessToken) -> None:
        with self.transaction():
            self._execute(
                "INSERT INTO access_tokens (token, client_id, user_id, scopes, expires_at,"
                " revoked, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    token.token,
                    token.client_id,
                    token.user_id,
                    " ".join(token.scopes),
                    _ts(token.expires_at),
                    int(token.revoked),
                    _ts(token.created_at),
                ),
            )

    def get_access_token(self, token: str) -> AccessToken | None:
        with self.transaction():
            row = self._execute(
                "SELECT * FROM access_tokens WHERE token = ?", (token,)
            ).fetchone()
        return self._row_to_access(row) if row else None

    def revoke_access_token(self, token: str) -> bool:
        with self.transaction():
            cur = self._execute(
                "UPDATE access_tokens SET revoked = 1 WHERE token = ? AND revoked = 0", (token,)
            )
        return cur.rowcount == 1

    # -- refresh tokens ---------------------------------------------------

    @staticmethod
    def _row_to_refresh(row: sqlite3.Row) -> RefreshToken:
        return RefreshToken(
            token=row["token"],
            client_id=row["client_id"],
            user_id=row["user_id"],
            access_token=row["access_token"],
            expires_at=_dt(row["expires_at"]),
            revoked=bool(row["revoked"]),
            created_at=_dt(row["created_at"]),
        )

    def insert_refresh_token(self, token: RefreshToken) -> None:
        with self.transaction():
            self._execute(
                "INSERT INTO refresh_tokens (token, client_id, user_id, access_token,"
                " expires_at, revoked, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    token.token,
                    token.client_id,
                    token.user_id,
                    token.access_token,
                    _ts(token.expires_at),
                    int(token.revoked),
                    _ts(token.created_at),
                ),
            )

    def get_refresh_token(self, token: str) -> RefreshToken | None:
        """Return the refresh token only while it is unrevoked."""
        with self.transaction():
            row = self._execute(
                "SELECT * FROM refresh_tokens WHERE token = ? AND revoked = 0", (token,)
            ).fetchone()
        return self._row_to_refresh(row) if row else None

    def repoint_refresh_token(self, token: str, old_access: str, new_access: str) -> bool:
        """Swap the associated access token if it is still *old_access*."""
        with self.transaction():
            cur = self._execute(
                "UPDATE refresh_tokens SET access_token = ?"
                " WHERE token = ? AND access_token = ? AND revoked = 0",
                (new_access, token, old_access),
            )
        return cur.rowcount == 1

    def revoke_refresh_token(self, token: str) -> bool:
        with self.transaction():
            cur = self._execute(
                "UPDATE refresh_tokens SET revoked = 1 WHERE token = ? AND revoked = 0", (token,)
            )
        return cur.rowcount == 1
