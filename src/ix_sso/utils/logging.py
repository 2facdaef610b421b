"""Structured logging with secret redaction.

All package loggers are structlog loggers. Secrets are removed from event
dicts by :class:`RedactingProcessor` before any renderer sees them.
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Any

import structlog

from ..config import DEFAULT_SENSITIVE_KEYS, SSOSettings

REDACTED = "***REDACTED***"

# structlog's own bookkeeping keys are never redacted
_RESERVED_KEYS = {"event", "level", "timestamp", "logger", "exc_info", "stack_info"}

# Metadata keys that contain a sensitive fragment ("code", "state") but carry no secret
SAFE_KEYS = frozenset({"status_code", "login_state", "state_present"})


def _is_sensitive(key: str, sensitive_keys: Iterable[str]) -> bool:
    lowered = key.lower()
    if lowered in SAFE_KEYS:
        return False
    return any(fragment in lowered for fragment in sensitive_keys)


def redact(data: Any, sensitive_keys: Iterable[str] | None = None) -> Any:
    """
    Recursively replace values stored under sensitive keys.

    A key is sensitive when it contains any configured fragment
    (case-insensitive), so "keycloak_refresh_token" matches "refresh_token".

    Args:
        data: Mapping, list or scalar to sanitize
        sensitive_keys: Key fragments to redact (defaults to DEFAULT_SENSITIVE_KEYS)

    Returns:
        A sanitized copy; the input is not modified
    """
    keys = [k.lower() for k in (sensitive_keys or DEFAULT_SENSITIVE_KEYS)]

    if isinstance(data, Mapping):
        sanitized = {}
        for key, value in data.items():
            if isinstance(key, str) and _is_sensitive(key, keys):
                sanitized[key] = REDACTED
            else:
                sanitized[key] = redact(value, keys)
        return sanitized

    if isinstance(data, (list, tuple)):
        return type(data)(redact(item, keys) for item in data)

    return data


class RedactingProcessor:
    """structlog processor that redacts sensitive keys in every event."""

    def __init__(self, sensitive_keys: Iterable[str] | None = None):
        self.sensitive_keys = [k.lower() for k in (sensitive_keys or DEFAULT_SENSITIVE_KEYS)]

    def __call__(self, logger, method_name: str, event_dict: dict) -> dict:
        for key, value in list(event_dict.items()):
            if key in _RESERVED_KEYS:
                continue
            if _is_sensitive(key, self.sensitive_keys):
                event_dict[key] = REDACTED
            else:
                event_dict[key] = redact(value, self.sensitive_keys)
        return event_dict


def configure_logging(settings: SSOSettings) -> None:
    """
    Install the structlog processor chain for SSO logging.

    Call once at startup. Safe to call again after settings change.

    Args:
        settings: SSO settings (logging group is used)
    """
    level = logging.getLevelName(settings.logging.level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    if not settings.logging.enabled:
        level = logging.CRITICAL + 10

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.logging.json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            RedactingProcessor(settings.logging.sensitive_keys),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str | None = None):
    """Return a structlog logger."""
    return structlog.get_logger(name)
