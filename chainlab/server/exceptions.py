"""
HTTP exception types and status mapping for the API server.
"""

from typing import Dict, Optional


class APIError(Exception):
    """Base exception for API errors raised by the HTTP layer itself."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, request_id: Optional[str] = None) -> None:
        self.message = message
        self.request_id = request_id
        super().__init__(message)


class AuthenticationError(APIError):
    """Invalid or missing authentication credentials."""

    status_code = 401
    code = "authentication_error"


class MissingOwnerError(APIError):
    """The gateway did not forward an owner identity."""

    status_code = 401
    code = "missing_owner"


# ChainlabError.kind -> HTTP status
STATUS_BY_KIND: Dict[str, int] = {
    "conflict": 409,
    "stale_handle": 410,
    "runtime_unavailable": 503,
    "sandbox_not_ready": 409,
    "transport_error": 502,
    "exec_timeout": 504,
    "inconsistent_state": 500,
    "owner_not_found": 404,
    "unknown_route": 400,
    "invalid_command": 400,
    "provisioning_error": 422,
    "store_error": 503,
}


def status_for_kind(kind: str) -> int:
    return STATUS_BY_KIND.get(kind, 500)
