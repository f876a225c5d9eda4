"""Backing stores for the import pipeline."""

from __future__ import annotations

from ..core_config import Settings, get_settings
from ..error_taxonomy import ConfigurationError
from .base import CODE_COLUMNS, CodeId, InsertResult, OrgStore, code_column
from .memory import DryRunStore, InMemoryStore

__all__ = [
    "CODE_COLUMNS",
    "CodeId",
    "DryRunStore",
    "InMemoryStore",
    "InsertResult",
    "OrgStore",
    "build_store",
    "code_column",
]


def build_store(settings: Settings | None = None, backend: str | None = None) -> OrgStore:
    """Construct the store selected by ``ORGSYNC_BACKEND`` (or ``backend``)."""

    settings = settings or get_settings()
    selected = (backend or settings.backend).strip().lower()
    if selected == "memory":
        return InMemoryStore()

    settings.require_backend_credentials(selected)  # type: ignore[arg-type]
    if selected == "supabase":
        from ..supabase_client import create_supabase_client
        from .supabase import SupabaseOrgStore

        return SupabaseOrgStore(create_supabase_client(settings), max_attempts=settings.write_retries)
    if selected == "graphql":
        from .graphql import GraphQLOrgStore

        return GraphQLOrgStore(
            settings.graphql_url,
            admin_secret=settings.graphql_admin_secret,
            token=settings.graphql_token,
            timeout=settings.http_timeout,
            max_attempts=settings.write_retries,
        )
    raise ConfigurationError(f"Unknown store backend: {selected}")
