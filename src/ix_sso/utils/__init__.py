"""SSO utilities."""

from . import cache, crypto, errors, jwt, logging, retry

__all__ = [
    "cache",
    "crypto",
    "errors",
    "jwt",
    "logging",
    "retry",
]
