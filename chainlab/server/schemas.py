"""
Pydantic models for API request/response schemas.
"""
import json
from typing import Any, List, Optional

from pydantic import BaseModel, Field, model_validator

from chainlab.models import CommandResult, SandboxHandle


# =============================================================================
# Sandbox Endpoint Schemas
# =============================================================================


class SandboxResponse(BaseModel):
    """Current sandbox handle of the calling owner."""

    owner_id: str = Field(..., description="Owner identifier")
    state: str = Field(..., description="Lifecycle state")
    instance_id: Optional[str] = Field(None, description="Runtime instance id, null without a live sandbox")
    updated_at: str = Field(..., description="ISO timestamp of the last transition")

    @classmethod
    def from_handle(cls, handle: SandboxHandle) -> "SandboxResponse":
        return cls(
            owner_id=handle.owner_id,
            state=handle.lifecycle_state.value,
            instance_id=handle.runtime_instance_id,
            updated_at=handle.updated_at.isoformat(),
        )


class ExecRequest(BaseModel):
    """
    Request body for POST /v1/sandbox/exec.

    Either `route` (+ optional `payload`) or the legacy tagged `cmd` array
    ["mis", "<path>", "<body>"], not both.
    """

    route: Optional[str] = Field(None, description="In-sandbox path, e.g. /proxy/-1/consensus")
    payload: Optional[Any] = Field(
        None, description="Request body; strings are sent as is, other JSON values are serialized"
    )
    cmd: Optional[List[str]] = Field(None, description="Legacy tagged command array")
    timeout_seconds: Optional[float] = Field(None, description="Exec deadline override", gt=0)

    @model_validator(mode="after")
    def _route_or_cmd(self) -> "ExecRequest":
        if (self.route is None) == (self.cmd is None):
            raise ValueError("exactly one of 'route' or 'cmd' is required")
        if self.cmd is not None and self.payload is not None:
            raise ValueError("'payload' cannot be combined with 'cmd'")
        return self

    def payload_bytes(self) -> bytes:
        if self.payload is None:
            return b""
        if isinstance(self.payload, str):
            return self.payload.encode("utf-8")
        return json.dumps(self.payload).encode("utf-8")


class ExecResponse(BaseModel):
    """Response body for POST /v1/sandbox/exec."""

    output: str = Field(..., description="stdout, followed by stderr when present")
    stdout: str = Field(..., description="Decoded stdout")
    stderr: str = Field(..., description="Decoded stderr")
    succeeded: bool = Field(..., description="Request reached the control plane")

    @classmethod
    def from_result(cls, result: CommandResult) -> "ExecResponse":
        return cls(
            output=result.text,
            stdout=result.stdout.decode("utf-8", errors="replace"),
            stderr=result.stderr.decode("utf-8", errors="replace"),
            succeeded=result.succeeded,
        )


# =============================================================================
# Health Endpoint Schemas
# =============================================================================


class HealthResponse(BaseModel):
    """Response body for GET /health."""

    status: str = Field(..., description="Health status")
    version: str = Field(..., description="API version")
    runtime: Optional[bool] = Field(None, description="Container runtime reachable")


# =============================================================================
# Error Schemas
# =============================================================================


class ErrorDetail(BaseModel):
    """Error detail."""

    code: str = Field(..., description="Error code")
    kind: str = Field(..., description="Error taxonomy kind")
    message: str = Field(..., description="Error message")
    retryable: bool = Field(False, description="Safe to retry without inspecting state")
    request_id: Optional[str] = Field(None, description="Request ID for tracing")


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: ErrorDetail
