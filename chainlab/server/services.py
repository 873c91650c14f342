"""
Construction of the orchestrator and its collaborators from settings.

The app owns exactly one orchestrator, stored on app.state; handlers reach
it through the get_orchestrator dependency.
"""

import logging
from typing import Optional

from fastapi import Request

from chainlab.audit import AuditLogger
from chainlab.bridge import BridgeConfig
from chainlab.orchestrator import OrchestratorConfig, SessionOrchestrator
from chainlab.runtime import DockerRuntime
from chainlab.server.config import Settings
from chainlab.server.exceptions import APIError
from chainlab.store import IdentityStore, InMemoryIdentityStore, JsonFileIdentityStore

logger = logging.getLogger(__name__)


def build_store(settings: Settings) -> IdentityStore:
    if settings.store == "memory":
        return InMemoryIdentityStore()
    if settings.store == "file":
        return JsonFileIdentityStore(settings.store_path)
    raise ValueError(f"Unknown CHAINLAB_STORE: {settings.store!r} (expected 'file' or 'memory')")


def build_orchestrator(
    settings: Settings,
    audit: Optional[AuditLogger] = None,
) -> SessionOrchestrator:
    """Wire store, Docker runtime and configuration into an orchestrator."""
    store = build_store(settings)
    runtime = DockerRuntime(
        base_url=settings.docker_base_url,
        api_version=settings.docker_api_version,
        timeout=int(settings.runtime_timeout_seconds),
    )
    logger.info(
        "Orchestrator: image=%s store=%s docker=%s",
        settings.sandbox_image,
        settings.store,
        settings.docker_base_url or "environment",
    )
    return SessionOrchestrator(
        store=store,
        runtime=runtime,
        config=OrchestratorConfig(
            image=settings.sandbox_image,
            command=settings.sandbox_command,
            runtime_timeout_seconds=settings.runtime_timeout_seconds,
            exec_timeout_seconds=settings.exec_timeout_seconds,
        ),
        bridge_config=BridgeConfig(port=settings.sandbox_port),
        audit=audit,
    )


def get_orchestrator(request: Request) -> SessionOrchestrator:
    """FastAPI dependency returning the app's orchestrator."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise APIError("Sandbox orchestrator is not initialized")
    return orchestrator
