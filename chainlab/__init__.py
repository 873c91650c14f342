"""
chainlab - One container sandbox per owner, driven through a narrow command bridge.

Core usage:
    from chainlab import SessionOrchestrator, OrchestratorConfig
    from chainlab.runtime import DockerRuntime
    from chainlab.store import JsonFileIdentityStore

    orchestrator = SessionOrchestrator(
        store=JsonFileIdentityStore("./chainlab-data"),
        runtime=DockerRuntime(),
        config=OrchestratorConfig(image="chain-proxy"),
    )

    await orchestrator.ensure_sandbox("alice")
    await orchestrator.start_sandbox("alice")
    result = await orchestrator.run_command("alice", "/proxy/-1/consensus")
    print(result.text)

HTTP API:
    chainlab serve
    uvicorn chainlab.server:app
"""

# =============================================================================
# Orchestration
# =============================================================================
from chainlab.orchestrator import OrchestratorConfig, SessionOrchestrator  # noqa: F401
from chainlab.lifecycle import LifecycleManager  # noqa: F401
from chainlab.bridge import BridgeConfig, CommandBridge  # noqa: F401
from chainlab.audit import AuditEvent, AuditEventType, AuditLogger  # noqa: F401

# =============================================================================
# Data types
# =============================================================================
from chainlab.models import (  # noqa: F401
    CommandRequest,
    CommandResult,
    LifecycleState,
    OwnerRecord,
    SandboxHandle,
)
from chainlab.routes import Route, build_path, resolve_route  # noqa: F401

# =============================================================================
# Typed exceptions - For structured error handling
# =============================================================================
from chainlab.exceptions import (  # noqa: F401
    ChainlabError,
    ConflictError,
    StaleHandle,
    RuntimeUnavailable,
    ProvisioningError,
    SandboxNotReady,
    TransportError,
    ExecTimeout,
    InconsistentState,
    OwnerNotFound,
    StoreError,
    UnknownRoute,
    InvalidCommand,
)

__version__ = "1.0.0"

__all__ = [
    "SessionOrchestrator",
    "OrchestratorConfig",
    "LifecycleManager",
    "CommandBridge",
    "BridgeConfig",
    "AuditLogger",
    "AuditEvent",
    "AuditEventType",
    "CommandRequest",
    "CommandResult",
    "LifecycleState",
    "OwnerRecord",
    "SandboxHandle",
    "Route",
    "build_path",
    "resolve_route",
    "ChainlabError",
    "ConflictError",
    "StaleHandle",
    "RuntimeUnavailable",
    "ProvisioningError",
    "SandboxNotReady",
    "TransportError",
    "ExecTimeout",
    "InconsistentState",
    "OwnerNotFound",
    "StoreError",
    "UnknownRoute",
    "InvalidCommand",
]
