"""
Health check endpoint.

Provides basic health status for load balancers and monitoring.
"""
from fastapi import APIRouter, Request

from chainlab.server.schemas import HealthResponse


router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """
    Health check endpoint.

    Reports "degraded" when the container runtime does not answer; the
    service still responds so existing handles can be described.
    Does not require authentication.
    """
    orchestrator = getattr(request.app.state, "orchestrator", None)
    runtime = await orchestrator.runtime_available() if orchestrator is not None else None
    return HealthResponse(
        status="degraded" if runtime is False else "healthy",
        version="1.0.0",
        runtime=runtime,
    )
