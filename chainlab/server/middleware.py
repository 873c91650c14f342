"""
Owner-scoped request tracking.

Every request gets a request ID (taken from X-Request-ID or generated) and
the gateway-resolved owner from X-Owner-ID, both stored on `request.state`
where the sandbox router and the owner dependency read them. Requests to the
sandbox API are recorded in the app's audit log, tagged with their owner.
"""

from __future__ import annotations

import time
import uuid
from typing import Awaitable, Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from chainlab.audit import AuditLogger

TRACKED_PREFIX = "/v1/sandbox"


def generate_request_id() -> str:
    return f"req-{uuid.uuid4().hex[:16]}"


def owner_from_headers(request: Request) -> Optional[str]:
    """The X-Owner-ID header, stripped; None when absent or blank."""
    owner_id = request.headers.get("X-Owner-ID", "").strip()
    return owner_id or None


class OwnerRequestMiddleware(BaseHTTPMiddleware):
    """Attaches request ID and owner to each request and audits sandbox calls."""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        owner_id = owner_from_headers(request)
        request.state.request_id = request_id
        request.state.owner_id = owner_id

        audit: Optional[AuditLogger] = getattr(request.app.state, "audit", None)
        if audit is None or not request.url.path.startswith(TRACKED_PREFIX):
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response

        audit.log_request_submitted(request_id=request_id, owner_id=owner_id)
        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            audit.log_request_failed(
                request_id=request_id,
                owner_id=owner_id,
                error_category=type(e).__name__,
                execution_time_ms=_elapsed_ms(start_time),
            )
            raise

        if response.status_code < 400:
            audit.log_request_completed(
                request_id=request_id,
                owner_id=owner_id,
                execution_time_ms=_elapsed_ms(start_time),
            )
        else:
            audit.log_request_failed(
                request_id=request_id,
                owner_id=owner_id,
                error_category=f"http_{response.status_code}",
                execution_time_ms=_elapsed_ms(start_time),
            )
        response.headers["X-Request-ID"] = request_id
        return response


def _elapsed_ms(start_time: float) -> float:
    return (time.perf_counter() - start_time) * 1000
