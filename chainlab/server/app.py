"""
FastAPI application factory.

Usage:
    from chainlab.server.app import create_app

    app = create_app()

Or run directly:
    uvicorn chainlab.server:app --reload
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from chainlab.audit import AuditLogger
from chainlab.exceptions import ChainlabError
from chainlab.orchestrator import SessionOrchestrator
from chainlab.server.config import get_settings
from chainlab.server.exceptions import APIError, status_for_kind
from chainlab.server.middleware import OwnerRequestMiddleware
from chainlab.server.schemas import ErrorResponse, ErrorDetail
from chainlab.server.routers import health, sandbox
from chainlab.server.services import build_orchestrator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings = get_settings()
    owns_audit = app.state.audit is None
    if owns_audit:
        app.state.audit = AuditLogger(
            output_path=settings.audit_log_path,
            include_timestamps=True,
        )
    if app.state.orchestrator is None:
        app.state.orchestrator = build_orchestrator(settings, audit=app.state.audit)

    yield

    if owns_audit:
        app.state.audit.close()
    else:
        app.state.audit.flush()


def _error_response(
    request: Request,
    status_code: int,
    detail: ErrorDetail,
) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")
    if detail.request_id is None:
        detail.request_id = request_id
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=detail).model_dump(),
        headers={"X-Request-ID": request_id},
    )


def create_app(
    orchestrator: Optional[SessionOrchestrator] = None,
    *,
    audit: Optional[AuditLogger] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        orchestrator: Pre-built orchestrator. None = build one from settings
            at startup.
        audit: Audit logger for request events. None = build one from
            settings at startup.

    Returns:
        Configured FastAPI application instance.
    """
    # Settings loaded for validation; app configuration is static.
    get_settings()

    app = FastAPI(
        title="Chainlab Sandbox API",
        description="Per-owner blockchain sandbox orchestration",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator
    app.state.audit = audit

    # Add middleware
    app.add_middleware(OwnerRequestMiddleware)

    # Exception handlers
    @app.exception_handler(ChainlabError)
    async def chainlab_error_handler(request: Request, exc: ChainlabError) -> JSONResponse:
        """Map taxonomy errors to statuses by kind."""
        status_code = status_for_kind(exc.kind)
        if status_code >= 500:
            logger.warning("%s on %s: %s", exc.kind, request.url.path, exc.message)
        return _error_response(
            request,
            status_code,
            ErrorDetail(
                code=exc.code,
                kind=exc.kind,
                message=exc.message,
                retryable=exc.retryable,
            ),
        )

    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
        """Handle custom API errors."""
        return _error_response(
            request,
            exc.status_code,
            ErrorDetail(
                code=exc.code,
                kind=exc.code,
                message=exc.message,
                request_id=exc.request_id,
            ),
        )

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected errors."""
        logger.exception("Unhandled error on %s", request.url.path)
        return _error_response(
            request,
            500,
            ErrorDetail(
                code="internal_error",
                kind="internal_error",
                message="An internal error occurred",
            ),
        )

    # Include routers
    app.include_router(health.router)
    app.include_router(sandbox.router)

    return app


# Default app instance for uvicorn
app = create_app()
