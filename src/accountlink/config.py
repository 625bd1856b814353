"""Configuration for accountlink.

Settings are read from environment variables prefixed with ``ACCOUNTLINK_``
(or a ``.env`` file in the working directory) and cached for the lifetime of
the process. Call ``get_settings.cache_clear()`` after changing the
environment in tests.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


def get_config_dir() -> Path:
    """Get/create the accountlink config directory (``~/.accountlink``)."""
    d = Path.home() / ".accountlink"
    d.mkdir(parents=True, exist_ok=True)
    return d


class Settings(BaseSettings):
    """Runtime settings for the account-linking service."""

    model_config = SettingsConfigDict(
        env_prefix="ACCOUNTLINK_",
        env_file=".env",
        extra="ignore",
    )

    # Identity provider
    provider: str = Field(default="github", description="Key into integrations.provider.PROVIDERS")
    client_id: str = ""
    client_secret: str = ""
    scopes: list[str] = Field(default_factory=lambda: ["read:user"])
    authorize_url: str | None = Field(
        default=None, description="Overrides the preset authorize URL"
    )
    token_url: str | None = Field(default=None, description="Overrides the preset token URL")
    provider_timeout_seconds: float = 15.0

    # Public URLs
    public_base_url: str = "http://localhost:8888"
    auth_end_redirect: str | None = Field(
        default=None, description="Page the callback redirects to with state= and code="
    )
    consent_page_uri: str | None = Field(
        default=None, description="Front-end page that starts the consent popup"
    )

    # Sealed state
    state_secrets: list[str] = Field(
        default_factory=list, description="Sealing secrets, newest first"
    )
    state_ttl_seconds: int = 900

    # Backends
    replay_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    token_store_backend: Literal["memory", "file"] = "file"
    token_store_dir: Path | None = None

    # Server
    web_host: str = "127.0.0.1"
    web_port: int = 8888
    log_level: str = "INFO"

    @property
    def callback_uri(self) -> str:
        return f"{self.public_base_url.rstrip('/')}/api/v1/oauth/callback"

    @property
    def resolved_auth_end_redirect(self) -> str:
        return self.auth_end_redirect or f"{self.public_base_url.rstrip('/')}/auth-end"

    @property
    def resolved_consent_page_uri(self) -> str:
        return self.consent_page_uri or f"{self.public_base_url.rstrip('/')}/auth-start"

    @classmethod
    def load(cls) -> Settings:
        """Return the cached process-wide settings."""
        return get_settings()


@lru_cache
def get_settings() -> Settings:
    settings = Settings()
    logger.debug("Loaded settings (provider=%s)", settings.provider)
    return settings
