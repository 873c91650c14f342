"""
Lifecycle Manager: sandbox state transitions against the container runtime.

The manager is stateless. Each operation takes the owner's current
SandboxHandle, checks the transition is legal, performs the runtime call and
returns the new handle. Persisting that handle is the orchestrator's job.

    UNPROVISIONED ──provision──► CREATED ──start──► RUNNING
          ▲                         │                 │  ▲
          │                         │               stop start
          │                         │                 ▼  │
       (stale)                      └──remove──►   STOPPED
                                                      │
                              REMOVED ◄──remove───────┘

Nothing here retries. A runtime call that times out or is cancelled after
being issued has an unknown outcome and is reported as InconsistentState.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Optional, Sequence, TypeVar

from chainlab.exceptions import ConflictError, InconsistentState
from chainlab.models import LifecycleState, SandboxHandle
from chainlab.runtime.protocol import OWNER_LABEL, ContainerRuntime

logger = logging.getLogger(__name__)

T = TypeVar("T")

_STARTABLE = (LifecycleState.CREATED, LifecycleState.STOPPED)


class LifecycleManager:
    """Idempotent create/start/stop/remove keyed by sandbox handle."""

    def __init__(self, runtime: ContainerRuntime, *, timeout_seconds: float = 60.0) -> None:
        self._runtime = runtime
        self._timeout = timeout_seconds

    async def provision(
        self,
        handle: SandboxHandle,
        image: str,
        command: Optional[Sequence[str]] = None,
        *,
        timeout: Optional[float] = None,
    ) -> SandboxHandle:
        """
        Create the backing container for an owner with no live sandbox.

        Raises:
            ConflictError: If the handle already has an instance.
        """
        if handle.is_provisioned:
            raise ConflictError(
                f"Sandbox for {handle.owner_id} already provisioned as {handle.runtime_instance_id}",
                state=handle.lifecycle_state.value,
                operation="provision",
            )
        instance_id = await self._call(
            "provision",
            handle,
            self._runtime.create(image, command, labels={OWNER_LABEL: handle.owner_id}),
            timeout,
        )
        return handle.transition(LifecycleState.CREATED, instance_id)

    async def start(self, handle: SandboxHandle, *, timeout: Optional[float] = None) -> SandboxHandle:
        """Start from CREATED or STOPPED. Already RUNNING is a no-op."""
        if handle.lifecycle_state == LifecycleState.RUNNING:
            logger.debug("Sandbox for %s already running", handle.owner_id)
            return handle
        if handle.lifecycle_state not in _STARTABLE:
            raise self._refuse(handle, "start")
        assert handle.runtime_instance_id is not None
        await self._call("start", handle, self._runtime.start(handle.runtime_instance_id), timeout)
        return handle.transition(LifecycleState.RUNNING)

    async def stop(self, handle: SandboxHandle, *, timeout: Optional[float] = None) -> SandboxHandle:
        """Stop from RUNNING. Already STOPPED is a no-op."""
        if handle.lifecycle_state == LifecycleState.STOPPED:
            logger.debug("Sandbox for %s already stopped", handle.owner_id)
            return handle
        if handle.lifecycle_state != LifecycleState.RUNNING:
            raise self._refuse(handle, "stop")
        assert handle.runtime_instance_id is not None
        await self._call("stop", handle, self._runtime.stop(handle.runtime_instance_id), timeout)
        return handle.transition(LifecycleState.STOPPED)

    async def remove(
        self,
        handle: SandboxHandle,
        *,
        force: bool = True,
        timeout: Optional[float] = None,
    ) -> SandboxHandle:
        """Remove the instance from any state that has one; clears the instance id."""
        if not handle.is_provisioned:
            raise self._refuse(handle, "remove")
        assert handle.runtime_instance_id is not None
        await self._call(
            "remove",
            handle,
            self._runtime.remove(handle.runtime_instance_id, force=force),
            timeout,
        )
        return handle.transition(LifecycleState.REMOVED)

    @staticmethod
    def _refuse(handle: SandboxHandle, operation: str) -> ConflictError:
        return ConflictError(
            f"Cannot {operation} sandbox for {handle.owner_id} in state {handle.lifecycle_state.value}",
            state=handle.lifecycle_state.value,
            operation=operation,
        )

    async def _call(
        self,
        operation: str,
        handle: SandboxHandle,
        call: Awaitable[T],
        timeout: Optional[float],
    ) -> T:
        """Await a runtime call under a deadline."""
        deadline = self._timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(call, timeout=deadline)
        except asyncio.TimeoutError:
            raise InconsistentState(
                f"Runtime {operation} for {handle.owner_id} timed out after {deadline}s; outcome unknown",
                owner_id=handle.owner_id,
                instance_id=handle.runtime_instance_id,
                outcome="unknown",
                details={"operation": operation},
            )
        except asyncio.CancelledError:
            logger.warning(
                "Runtime %s for %s cancelled in flight; outcome unknown",
                operation,
                handle.owner_id,
            )
            raise
