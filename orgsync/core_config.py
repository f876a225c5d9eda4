"""
orgsync - Unified Configuration

Environment variables:
----------------------
  ORGSYNC_BACKEND               - supabase | graphql | memory (default: supabase)
  SUPABASE_URL                  - Supabase project REST URL
  SUPABASE_SERVICE_ROLE_KEY     - Service role JWT (server-side only)
  GRAPHQL_URL                   - GraphQL endpoint (Hasura-compatible)
  GRAPHQL_ADMIN_SECRET          - Sent as x-hasura-admin-secret when set
  GRAPHQL_TOKEN                 - Sent as a bearer token when no admin secret is set
  ORGSYNC_HTTP_TIMEOUT          - Per-request timeout in seconds (default: 30)
  ORGSYNC_WRITE_RETRIES         - Attempts for transient store errors (default: 3)
  ORGSYNC_MAX_PASSES            - Hierarchy creation pass cap (default: 10)
  LOG_LEVEL                     - DEBUG | INFO | WARNING | ERROR (default: INFO)

Usage:
------
    from orgsync.core_config import get_settings

    settings = get_settings()
    settings.require_backend_credentials()
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .error_taxonomy import ConfigurationError

logger = logging.getLogger(__name__)

Backend = Literal["supabase", "graphql", "memory"]


class Settings(BaseSettings):
    backend: Backend = Field("supabase", alias="ORGSYNC_BACKEND")

    supabase_url: str = Field("", alias="SUPABASE_URL")
    supabase_service_role_key: str = Field("", alias="SUPABASE_SERVICE_ROLE_KEY")

    graphql_url: str = Field("", alias="GRAPHQL_URL")
    graphql_admin_secret: Optional[str] = Field(None, alias="GRAPHQL_ADMIN_SECRET")
    graphql_token: Optional[str] = Field(None, alias="GRAPHQL_TOKEN")

    http_timeout: float = Field(30.0, alias="ORGSYNC_HTTP_TIMEOUT", gt=0)
    write_retries: int = Field(3, alias="ORGSYNC_WRITE_RETRIES", ge=1)
    max_passes: int = Field(10, alias="ORGSYNC_MAX_PASSES", ge=1)

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    @field_validator("backend", mode="before")
    @classmethod
    def _normalize_backend(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower() or "supabase"
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper() or "INFO"
        return value

    def missing_credentials(self, backend: Backend | None = None) -> list[str]:
        """Return the env var names that the selected backend needs but are blank."""

        selected = backend or self.backend
        if selected == "supabase":
            required = {
                "SUPABASE_URL": self.supabase_url,
                "SUPABASE_SERVICE_ROLE_KEY": self.supabase_service_role_key,
            }
        elif selected == "graphql":
            required = {"GRAPHQL_URL": self.graphql_url}
        else:
            return []
        return [name for name, value in required.items() if not (value or "").strip()]

    def require_backend_credentials(self, backend: Backend | None = None) -> None:
        missing = self.missing_credentials(backend)
        if missing:
            raise ConfigurationError(
                f"Missing credential(s) for '{backend or self.backend}' backend: "
                + ", ".join(missing)
            )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached settings instance."""

    settings = Settings()
    logger.debug("Loaded settings for backend=%s", settings.backend)
    return settings


def reset_settings() -> None:
    """Clear the cached settings (tests and long-lived shells)."""

    get_settings.cache_clear()
