"""JWT helpers for tokens received directly from the identity provider."""

from typing import Any

import jwt

ROLE_CLAIM_KEYS = ("realm_access", "resource_access", "roles")


def get_unverified_payload(token: str) -> dict[str, Any]:
    """
    Get JWT payload without verification.

    WARNING: This does not validate the token signature!
    Only use on tokens obtained from the token endpoint over TLS, never on
    tokens presented by a client.

    Args:
        token: JWT token string

    Returns:
        Decoded payload dictionary (unverified)
    """
    return jwt.decode(token, options={"verify_signature": False})


def get_unverified_header(token: str) -> dict[str, Any]:
    """
    Get JWT header without verification.

    Args:
        token: JWT token string

    Returns:
        JWT header dictionary
    """
    return jwt.get_unverified_header(token)


def extract_role_claims(token: str | None) -> dict[str, Any]:
    """
    Pull role claims out of an access token.

    Keycloak puts realm and client roles into the access token, while the
    userinfo endpoint only returns them when a protocol mapper is configured.

    Args:
        token: Access token (JWT) or None

    Returns:
        Dict with any of realm_access, resource_access and roles. Empty when
        the token is missing or not a JWT.
    """
    if not token:
        return {}
    try:
        payload = get_unverified_payload(token)
    except jwt.InvalidTokenError:
        return {}
    return {key: payload[key] for key in ROLE_CLAIM_KEYS if key in payload}


def get_token_expiry(token: str | None) -> float | None:
    """
    Expiry of a JWT as a POSIX timestamp, read from its ``exp`` claim.

    Returns:
        The ``exp`` value, or None when the token is missing, not a JWT or
        carries no numeric ``exp``
    """
    if not token:
        return None
    try:
        payload = get_unverified_payload(token)
    except jwt.InvalidTokenError:
        return None
    exp = payload.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    return float(exp)
