from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class LifecycleState(str, Enum):
    """
    Lifecycle of a sandbox instance.

    UNPROVISIONED and REMOVED carry no runtime instance; CREATED, RUNNING
    and STOPPED always do.
    """

    UNPROVISIONED = "unprovisioned"
    CREATED = "created"
    RUNNING = "running"
    STOPPED = "stopped"
    REMOVED = "removed"

    @property
    def has_instance(self) -> bool:
        return self in (LifecycleState.CREATED, LifecycleState.RUNNING, LifecycleState.STOPPED)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SandboxHandle(BaseModel):
    """
    Binding between an owner and at most one backing sandbox.

    Handles are immutable; every transition produces a new handle through
    transition(), which re-runs validation so an instance id can never be
    attached to a state without one (or vice versa).
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    owner_id: str = Field(..., min_length=1)
    runtime_instance_id: Optional[str] = None
    lifecycle_state: LifecycleState = LifecycleState.UNPROVISIONED
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def _check_instance_matches_state(self) -> "SandboxHandle":
        has_id = bool(self.runtime_instance_id)
        if has_id != self.lifecycle_state.has_instance:
            raise ValueError(
                f"runtime_instance_id={self.runtime_instance_id!r} is invalid "
                f"for state {self.lifecycle_state.value}"
            )
        return self

    @classmethod
    def unprovisioned(cls, owner_id: str) -> "SandboxHandle":
        return cls(owner_id=owner_id)

    def transition(
        self,
        state: LifecycleState,
        runtime_instance_id: Optional[str] = None,
    ) -> "SandboxHandle":
        """Return a new handle in `state`, keeping the instance id when the state needs one."""
        if state.has_instance:
            instance_id = runtime_instance_id or self.runtime_instance_id
        else:
            instance_id = None
        return SandboxHandle(
            owner_id=self.owner_id,
            runtime_instance_id=instance_id,
            lifecycle_state=state,
        )

    @property
    def is_provisioned(self) -> bool:
        return self.lifecycle_state.has_instance


class OwnerRecord(BaseModel):
    """
    Identity store record with the sandbox handle embedded.

    Unknown fields (credential hashes, course progress, ...) belong to other
    collaborators and are carried through untouched.
    """

    model_config = ConfigDict(extra="allow")

    owner_id: str = Field(..., min_length=1)
    sandbox: Optional[SandboxHandle] = None

    @model_validator(mode="after")
    def _default_handle(self) -> "OwnerRecord":
        if self.sandbox is None:
            self.sandbox = SandboxHandle.unprovisioned(self.owner_id)
        elif self.sandbox.owner_id != self.owner_id:
            raise ValueError(
                f"sandbox owner {self.sandbox.owner_id!r} does not match record {self.owner_id!r}"
            )
        return self

    @property
    def handle(self) -> SandboxHandle:
        assert self.sandbox is not None
        return self.sandbox

    def with_handle(self, handle: SandboxHandle) -> "OwnerRecord":
        """Copy of this record carrying `handle`."""
        data: Dict[str, Any] = self.model_dump(mode="json")
        data["sandbox"] = handle.model_dump(mode="json")
        return OwnerRecord.model_validate(data)


@dataclass(frozen=True)
class CommandRequest:
    """A logical command for the in-sandbox control plane. Never persisted."""

    route: str
    payload: bytes = b""


@dataclass
class CommandResult:
    """Outcome of a bridged command with the exec stream split per channel."""

    stdout: bytes
    stderr: bytes
    succeeded: bool

    @property
    def text(self) -> str:
        """Stdout, followed by stderr only when the command also wrote diagnostics."""
        output = self.stdout.decode("utf-8", errors="replace")
        if self.stderr:
            output += "\nError output: " + self.stderr.decode("utf-8", errors="replace")
        return output
