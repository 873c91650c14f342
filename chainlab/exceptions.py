"""
Typed exceptions for chainlab.

Every error carries a taxonomy ``kind`` so boundary layers can map it to a
status without parsing messages:

- ConflictError: invalid lifecycle transition
- StaleHandle: the runtime no longer knows the sandbox instance
- RuntimeUnavailable: transient container runtime failure (retryable)
- SandboxNotReady: command issued before the sandbox is RUNNING
- TransportError: the in-sandbox request never reached its target
- ExecTimeout: exec deadline exceeded, side effect unknown (retryable)
- InconsistentState: runtime and identity store diverged

All exceptions include structured attributes for programmatic handling.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class ChainlabError(Exception):
    """Base exception for all chainlab errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context as key-value pairs
        kind: Taxonomy entry, stable across codes
        retryable: True if the caller may retry without inspecting state
    """

    kind: str = "internal_error"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.kind
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging or API responses."""
        return {
            "error": self.code,
            "kind": self.kind,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class ConflictError(ChainlabError):
    """Invalid lifecycle transition attempted.

    Raised when:
    - provision is requested for an owner that already has a sandbox
    - start/stop/remove is requested from a state that does not allow it
    - the runtime itself refuses the operation (HTTP 409)

    Attributes:
        state: Lifecycle state the handle was in
        operation: Operation that was refused
    """

    kind = "conflict"

    def __init__(
        self,
        message: str,
        *,
        state: Optional[str] = None,
        operation: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if state:
            details["state"] = state
        if operation:
            details["operation"] = operation

        self.state = state
        self.operation = operation

        super().__init__(message, code=code, details=details)


class StaleHandle(ChainlabError):
    """The runtime reports the sandbox instance as missing.

    Usually the container was deleted outside chainlab. The orchestrator
    resets the owner's handle to UNPROVISIONED when it sees this.
    """

    kind = "stale_handle"

    def __init__(
        self,
        message: str,
        *,
        instance_id: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if instance_id:
            details["instance_id"] = instance_id
        self.instance_id = instance_id
        super().__init__(message, code=code, details=details)


class RuntimeUnavailable(ChainlabError):
    """Container runtime could not be reached or failed transiently."""

    kind = "runtime_unavailable"
    retryable = True


class ProvisioningError(ChainlabError):
    """The runtime rejected a create request (missing image, bad command)."""

    kind = "provisioning_error"


class SandboxNotReady(ChainlabError):
    """A command was issued while the sandbox is not RUNNING."""

    kind = "sandbox_not_ready"

    def __init__(
        self,
        message: str,
        *,
        state: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if state:
            details["state"] = state
        self.state = state
        super().__init__(message, code=code, details=details)


class TransportError(ChainlabError):
    """The bridged request could not reach its in-sandbox target.

    Attributes:
        stdout: Captured stdout of the wrapped invocation
        stderr: Captured stderr of the wrapped invocation
    """

    kind = "transport_error"

    def __init__(
        self,
        message: str,
        *,
        stdout: Optional[str] = None,
        stderr: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if stdout:
            details["stdout"] = stdout[:1000]  # Truncate for safety
        if stderr:
            details["stderr"] = stderr[:1000]

        self.stdout = stdout
        self.stderr = stderr

        super().__init__(message, code=code, details=details)


class ExecTimeout(ChainlabError):
    """Exec deadline exceeded. The in-sandbox side effect may or may not have happened."""

    kind = "exec_timeout"
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        timeout_seconds: Optional[float] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if timeout_seconds is not None:
            details["timeout_seconds"] = timeout_seconds
        self.timeout_seconds = timeout_seconds
        super().__init__(message, code=code, details=details)


class InconsistentState(ChainlabError):
    """Runtime and identity store diverged; needs out-of-band reconciliation.

    Raised when:
    - a runtime call succeeded but persisting the new handle failed
    - a runtime call was cancelled or timed out before its result was known
      (details["outcome"] == "unknown")
    """

    kind = "inconsistent_state"

    def __init__(
        self,
        message: str,
        *,
        owner_id: Optional[str] = None,
        instance_id: Optional[str] = None,
        outcome: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if owner_id:
            details["owner_id"] = owner_id
        if instance_id:
            details["instance_id"] = instance_id
        if outcome:
            details["outcome"] = outcome

        self.owner_id = owner_id
        self.instance_id = instance_id
        self.outcome = outcome

        super().__init__(message, code=code, details=details)


class OwnerNotFound(ChainlabError):
    """The identity store has no record for the owner."""

    kind = "owner_not_found"


class StoreError(ChainlabError):
    """The identity store failed to read or write a record."""

    kind = "store_error"


class UnknownRoute(ChainlabError):
    """The requested in-sandbox route is not part of the catalogue."""

    kind = "unknown_route"


class InvalidCommand(ChainlabError):
    """Command parameters or payload are malformed."""

    kind = "invalid_command"


__all__ = [
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
