from __future__ import annotations

import base64
import json
import logging

import httpx
from supabase import Client, ClientOptions, create_client

from .core_config import Settings, get_settings
from .error_taxonomy import ConfigurationError

logger = logging.getLogger(__name__)


def _build_supabase_http_client(timeout: float) -> httpx.Client:
    """Return an httpx client configured for Supabase REST calls."""
    return httpx.Client(timeout=httpx.Timeout(timeout))


def _client_options(timeout: float) -> ClientOptions:
    options = ClientOptions()
    options.httpx_client = _build_supabase_http_client(timeout)
    return options


def get_supabase_credentials(settings: Settings | None = None) -> tuple[str, str]:
    settings = settings or get_settings()
    url = (settings.supabase_url or "").strip()
    key = (settings.supabase_service_role_key or "").strip()
    missing = [
        name
        for name, value in {
            "SUPABASE_URL": url,
            "SUPABASE_SERVICE_ROLE_KEY": key,
        }.items()
        if not value
    ]
    if missing:
        raise ConfigurationError("Missing Supabase credential(s): " + ", ".join(missing))
    return url, key


def _verify_service_role(jwt_token: str) -> None:
    try:
        segments = jwt_token.split(".")
        if len(segments) < 2:
            raise ValueError("missing JWT payload")
        payload_segment = segments[1]
        padding = "=" * (-len(payload_segment) % 4)
        claims = json.loads(base64.urlsafe_b64decode(payload_segment + padding))
    except (ValueError, UnicodeDecodeError) as exc:
        raise ConfigurationError("Invalid SUPABASE_SERVICE_ROLE_KEY JWT") from exc

    role = claims.get("role") if isinstance(claims, dict) else None
    if role != "service_role":
        raise ConfigurationError(f"Service role key has unexpected role: {role}")


def create_supabase_client(settings: Settings | None = None) -> Client:
    settings = settings or get_settings()
    url, key = get_supabase_credentials(settings)
    _verify_service_role(key)
    client = create_client(url, key, options=_client_options(settings.http_timeout))
    logger.info("Initialized Supabase client for %s", url)
    return client
