"""Logging configuration and structured event helpers for orgsync."""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Final

__all__ = ["SafeFilter", "configure_logging", "event", "get_logger"]

_FORMAT: Final[str] = "%(asctime)s %(levelname)s run_id=%(run_id)s org=%(org)s %(name)s: %(message)s"
_SENSITIVE_PATTERN = re.compile(r"(password|passwd|token|secret|authorization|cookie|(^|_|api)key$)", re.IGNORECASE)
_EVENT_LOGGER = "orgsync.events"


def _resolve_level(level_name: str | None = None) -> int:
    name = level_name or os.getenv("LOG_LEVEL", "INFO")
    return getattr(logging, name.upper(), logging.INFO)


def _build_formatter() -> logging.Formatter:
    return logging.Formatter(_FORMAT, defaults={"run_id": "-", "org": "-"})


def configure_logging(level_name: str | None = None) -> None:
    """Configure root logging using LOG_LEVEL and a concise format."""
    level = _resolve_level(level_name)
    formatter = _build_formatter()
    root_logger = logging.getLogger()

    if not root_logger.handlers:
        logging.basicConfig(level=level)
    root_logger.setLevel(level)
    for handler in root_logger.handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        if not any(isinstance(f, SafeFilter) for f in handler.filters):
            handler.addFilter(SafeFilter())


def _is_sensitive_key(key: Any) -> bool:
    if not isinstance(key, str):
        return False
    return bool(_SENSITIVE_PATTERN.search(key))


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: ("***" if _is_sensitive_key(k) else _redact(v)) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_redact(element) for element in value]
    return value


class SafeFilter(logging.Filter):
    """Render structured payloads as JSON with sensitive values redacted."""

    def filter(self, record: logging.LogRecord) -> bool:
        payload = getattr(record, "_event_payload", None)
        if isinstance(payload, dict):
            record.msg = json.dumps(_redact(payload), separators=(",", ":"), sort_keys=True, default=str)
            record.args = ()
        return True


def event(name: str, **fields: Any) -> None:
    """Emit a structured JSON log line with sensitive fields redacted."""

    logger = logging.getLogger(_EVENT_LOGGER)
    if not any(isinstance(f, SafeFilter) for f in logger.filters):
        logger.addFilter(SafeFilter())
    payload = {"event": name, **fields}
    logger.info("%s", name, extra={"_event_payload": payload})


def get_logger(name: str) -> logging.Logger:
    """Return a module-scoped logger that inherits the root configuration."""

    return logging.getLogger(name)
