"""
Service authentication and owner resolution.

Owners are authenticated upstream; the gateway forwards the resolved
identity in X-Owner-ID. The gateway itself authenticates to this service
with X-API-Key when CHAINLAB_API_KEY is set. Uses constant-time comparison
to prevent timing attacks.
"""

import hmac
from typing import Optional

from fastapi import Header, Request

from chainlab.server.config import get_settings
from chainlab.server.exceptions import AuthenticationError, MissingOwnerError


def verify_api_key(api_key: str) -> bool:
    """
    Verify an API key against the configured key.

    Returns:
        True if valid, False otherwise.
    """
    settings = get_settings()
    if settings.api_key is None:
        return True  # No key configured = no auth required

    return hmac.compare_digest(api_key, settings.api_key)


def get_api_key(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> Optional[str]:
    """
    FastAPI dependency to extract and validate API key.

    Raises:
        AuthenticationError: If auth is required but key is missing or invalid.
    """
    settings = get_settings()

    if not settings.auth_required:
        return None

    if x_api_key is None:
        raise AuthenticationError("Missing X-API-Key header")

    if not verify_api_key(x_api_key):
        raise AuthenticationError("Invalid API key")

    return x_api_key


def get_owner_id(request: Request) -> str:
    """
    FastAPI dependency returning the authenticated owner.

    The owner is resolved once per request by OwnerRequestMiddleware.

    Raises:
        MissingOwnerError: If X-Owner-ID is absent or blank.
    """
    owner_id = getattr(request.state, "owner_id", None)
    if owner_id is None:
        raise MissingOwnerError("Missing X-Owner-ID header")
    return owner_id
