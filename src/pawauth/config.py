# Settings for the PawAuth server.
# Created: 2026-03-04
#
# Values come from PAWAUTH_* environment variables or a .env file.
# Secrets (internal provisioning token) are never given defaults.

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_config_dir() -> Path:
    """Return the config directory (``~/.pawauth`` unless PAWAUTH_CONFIG_DIR is set)."""
    override = os.environ.get("PAWAUTH_CONFIG_DIR")
    path = Path(override) if override else Path.home() / ".pawauth"
    path.mkdir(parents=True, exist_ok=True)
    return path


class Settings(BaseSettings):
    """Server configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PAWAUTH_", env_file=".env", extra="ignore"
    )

    database_path: Path | None = Field(
        default=None, description="SQLite database file; defaults to <config dir>/pawauth.db"
    )
    users_path: Path | None = Field(
        default=None, description="JSON file seeding the identity store"
    )
    audit_log_path: Path | None = None

    web_host: str = "127.0.0.1"
    web_port: int = 8888
    api_cors_allowed_origins: list[str] = Field(default_factory=list)
    log_level: str = "INFO"

    login_url: str = "/login"
    session_user_header: str = "X-Authenticated-User"
    internal_token: str | None = Field(
        default=None, description="Bearer token for internal client provisioning"
    )

    code_ttl_seconds: int = 600
    access_token_ttl_seconds: int = 3600
    refresh_token_ttl_seconds: int = 30 * 24 * 3600

    auth_rate_per_second: float = 5.0
    auth_rate_burst: int = 20

    @classmethod
    def load(cls) -> Settings:
        return cls()

    def resolved_database_path(self) -> Path:
        return self.database_path or get_config_dir() / "pawauth.db"


@lru_cache
def get_settings() -> Settings:
    return Settings.load()
