"""
Sandbox endpoints for the calling owner.

Endpoints:
- GET    /v1/sandbox        - Describe the current handle
- POST   /v1/sandbox        - Ensure a sandbox exists (provision if needed)
- POST   /v1/sandbox/start  - Start the sandbox
- POST   /v1/sandbox/stop   - Stop the sandbox
- DELETE /v1/sandbox        - Stop and remove the sandbox
- POST   /v1/sandbox/exec   - Run a control-plane command inside the sandbox

The owner comes from X-Owner-ID; every operation acts on that owner only.
"""

from fastapi import APIRouter, Depends, Request

from chainlab.orchestrator import SessionOrchestrator
from chainlab.routes import parse_legacy_command
from chainlab.server.auth import get_api_key, get_owner_id
from chainlab.server.schemas import ExecRequest, ExecResponse, SandboxResponse
from chainlab.server.services import get_orchestrator


router = APIRouter(
    prefix="/v1/sandbox",
    tags=["sandbox"],
    dependencies=[Depends(get_api_key)],
)


@router.get("", response_model=SandboxResponse)
async def describe_sandbox(
    owner_id: str = Depends(get_owner_id),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> SandboxResponse:
    handle = await orchestrator.describe(owner_id)
    return SandboxResponse.from_handle(handle)


@router.post("", response_model=SandboxResponse)
async def ensure_sandbox(
    request: Request,
    owner_id: str = Depends(get_owner_id),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> SandboxResponse:
    """Provision the owner's sandbox unless one already exists."""
    handle = await orchestrator.ensure_sandbox(
        owner_id, request_id=request.state.request_id
    )
    return SandboxResponse.from_handle(handle)


@router.post("/start", response_model=SandboxResponse)
async def start_sandbox(
    request: Request,
    owner_id: str = Depends(get_owner_id),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> SandboxResponse:
    handle = await orchestrator.start_sandbox(
        owner_id, request_id=request.state.request_id
    )
    return SandboxResponse.from_handle(handle)


@router.post("/stop", response_model=SandboxResponse)
async def stop_sandbox(
    request: Request,
    owner_id: str = Depends(get_owner_id),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> SandboxResponse:
    handle = await orchestrator.stop_sandbox(
        owner_id, request_id=request.state.request_id
    )
    return SandboxResponse.from_handle(handle)


@router.delete("", response_model=SandboxResponse)
async def teardown_sandbox(
    request: Request,
    owner_id: str = Depends(get_owner_id),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> SandboxResponse:
    """Stop and remove the sandbox. Repeating the call is harmless."""
    handle = await orchestrator.teardown_sandbox(
        owner_id, request_id=request.state.request_id
    )
    return SandboxResponse.from_handle(handle)


@router.post("/exec", response_model=ExecResponse)
async def exec_command(
    body: ExecRequest,
    request: Request,
    owner_id: str = Depends(get_owner_id),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> ExecResponse:
    """
    Bridge one request to the control plane inside the owner's sandbox.

    Application-level errors in the response body are returned as is with
    succeeded=true; only transport failures are reported as errors.
    """
    if body.cmd is not None:
        command = parse_legacy_command(body.cmd)
        route, payload = command.route, command.payload
    else:
        assert body.route is not None
        route, payload = body.route, body.payload_bytes()

    result = await orchestrator.run_command(
        owner_id,
        route,
        payload,
        timeout=body.timeout_seconds,
        request_id=request.state.request_id,
    )
    return ExecResponse.from_result(result)
