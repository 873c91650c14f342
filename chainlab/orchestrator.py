"""
Session Orchestrator: the entry point for everything an owner does with their sandbox.

Resolves owner -> SandboxHandle through the identity store, delegates to the
Lifecycle Manager or Command Bridge, and persists the resulting handle before
returning (write-then-report).

Guarantees:
- One sandbox per owner: provision only happens from UNPROVISIONED/REMOVED.
- Operations for one owner are serialized; different owners run in parallel.
- The handle is re-read from the store on every call, never cached.
- A runtime success whose handle could not be persisted raises
  InconsistentState and is logged for out-of-band reconciliation.
- StaleHandle (instance deleted behind our back) resets the owner to
  UNPROVISIONED so the next ensure_sandbox provisions a fresh instance.
- A command that finds a RUNNING sandbox stopped in the runtime records it
  as STOPPED so start_sandbox can bring it back.

Usage:
    orchestrator = SessionOrchestrator(
        store=JsonFileIdentityStore("./chainlab-data"),
        runtime=DockerRuntime(),
        config=OrchestratorConfig(image="chain-proxy"),
    )

    await orchestrator.ensure_sandbox("alice")
    await orchestrator.start_sandbox("alice")
    result = await orchestrator.run_command("alice", "/ping")
    await orchestrator.teardown_sandbox("alice")
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Optional, Sequence, Union

from chainlab.audit import AuditEventType, AuditLogger
from chainlab.bridge import BridgeConfig, CommandBridge
from chainlab.exceptions import (
    ChainlabError,
    InconsistentState,
    SandboxNotReady,
    StaleHandle,
    StoreError,
)
from chainlab.lifecycle import LifecycleManager
from chainlab.locks import OwnerLocks
from chainlab.models import (
    CommandRequest,
    CommandResult,
    LifecycleState,
    OwnerRecord,
    SandboxHandle,
)
from chainlab.routes import validate_command
from chainlab.runtime.protocol import ContainerRuntime
from chainlab.store.protocol import IdentityStore

logger = logging.getLogger(__name__)

_TRANSITION_EVENTS = {
    LifecycleState.CREATED: AuditEventType.SANDBOX_PROVISIONED,
    LifecycleState.RUNNING: AuditEventType.SANDBOX_STARTED,
    LifecycleState.STOPPED: AuditEventType.SANDBOX_STOPPED,
    LifecycleState.REMOVED: AuditEventType.SANDBOX_REMOVED,
}


@dataclass(frozen=True)
class OrchestratorConfig:
    """Sandbox image and deadlines applied when a call does not pass its own."""

    image: str = "chain-proxy"
    command: Optional[Sequence[str]] = None
    runtime_timeout_seconds: float = 60.0
    exec_timeout_seconds: float = 30.0


class SessionOrchestrator:
    """Binds owners to sandboxes and drives them through their lifecycle."""

    def __init__(
        self,
        store: IdentityStore,
        runtime: ContainerRuntime,
        config: Optional[OrchestratorConfig] = None,
        *,
        bridge_config: Optional[BridgeConfig] = None,
        audit: Optional[AuditLogger] = None,
    ) -> None:
        self._store = store
        self._runtime = runtime
        self._config = config or OrchestratorConfig()
        self._lifecycle = LifecycleManager(
            runtime, timeout_seconds=self._config.runtime_timeout_seconds
        )
        self._bridge = CommandBridge(
            runtime, bridge_config, timeout_seconds=self._config.exec_timeout_seconds
        )
        self._locks = OwnerLocks()
        self._audit = audit

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    async def runtime_available(self) -> bool:
        """True if the container runtime answers a ping."""
        return await self._runtime.ping()

    async def describe(self, owner_id: str) -> SandboxHandle:
        """Current persisted handle. Read-only, takes no lock."""
        record = await self._store.get(owner_id)
        return record.handle

    async def ensure_sandbox(
        self,
        owner_id: str,
        *,
        timeout: Optional[float] = None,
        request_id: Optional[str] = None,
    ) -> SandboxHandle:
        """
        Make sure the owner has a sandbox, provisioning one if needed.

        An owner that already has an instance gets its handle back unchanged.
        """
        async with self._locks.hold(owner_id):
            record = await self._store.get(owner_id)
            handle = record.handle
            if handle.is_provisioned:
                return handle
            record = await self._transition(
                record,
                "provision",
                self._lifecycle.provision(
                    handle, self._config.image, self._config.command, timeout=timeout
                ),
                request_id=request_id,
            )
            return record.handle

    async def start_sandbox(
        self,
        owner_id: str,
        *,
        timeout: Optional[float] = None,
        request_id: Optional[str] = None,
    ) -> SandboxHandle:
        async with self._locks.hold(owner_id):
            record = await self._store.get(owner_id)
            record = await self._transition(
                record,
                "start",
                self._lifecycle.start(record.handle, timeout=timeout),
                request_id=request_id,
            )
            return record.handle

    async def stop_sandbox(
        self,
        owner_id: str,
        *,
        timeout: Optional[float] = None,
        request_id: Optional[str] = None,
    ) -> SandboxHandle:
        async with self._locks.hold(owner_id):
            record = await self._store.get(owner_id)
            record = await self._transition(
                record,
                "stop",
                self._lifecycle.stop(record.handle, timeout=timeout),
                request_id=request_id,
            )
            return record.handle

    async def teardown_sandbox(
        self,
        owner_id: str,
        *,
        timeout: Optional[float] = None,
        request_id: Optional[str] = None,
    ) -> SandboxHandle:
        """
        Stop (if running) then force-remove the owner's sandbox.

        Safe to repeat: an owner with no instance is left as is, and an
        instance the runtime no longer knows counts as removed.
        """
        async with self._locks.hold(owner_id):
            record = await self._store.get(owner_id)
            if not record.handle.is_provisioned:
                logger.debug(
                    "Teardown for %s: nothing to do in state %s",
                    owner_id,
                    record.handle.lifecycle_state.value,
                )
                return record.handle
            if record.handle.lifecycle_state == LifecycleState.RUNNING:
                record = await self._transition(
                    record,
                    "stop",
                    self._lifecycle.stop(record.handle, timeout=timeout),
                    request_id=request_id,
                    stale_state=LifecycleState.REMOVED,
                )
                if not record.handle.is_provisioned:
                    return record.handle
            record = await self._transition(
                record,
                "remove",
                self._lifecycle.remove(record.handle, force=True, timeout=timeout),
                request_id=request_id,
                stale_state=LifecycleState.REMOVED,
            )
            return record.handle

    async def run_command(
        self,
        owner_id: str,
        route: str,
        payload: Union[bytes, str] = b"",
        *,
        timeout: Optional[float] = None,
        request_id: Optional[str] = None,
    ) -> CommandResult:
        """
        Bridge one command into the owner's RUNNING sandbox.

        The route is validated before the store or runtime is touched.

        Raises:
            UnknownRoute, InvalidCommand: On a bad command.
            SandboxNotReady: If the sandbox is not RUNNING. A handle recorded as
                RUNNING whose container turns out stopped is marked STOPPED first.
            StaleHandle: If the instance vanished; the handle is reset first.
            ExecTimeout, TransportError: See CommandBridge.execute.
        """
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        command = CommandRequest(route=route, payload=payload)
        resolved = validate_command(command)

        async with self._locks.hold(owner_id):
            record = await self._store.get(owner_id)
            handle = record.handle
            start_time = time.perf_counter()
            try:
                result = await self._bridge.execute(handle, command, timeout=timeout)
            except StaleHandle:
                self._audit_command(handle, resolved.route.name, start_time, "stale_handle", request_id)
                await self._reset_stale(record, "exec", request_id)
                raise
            except SandboxNotReady as e:
                self._audit_command(handle, resolved.route.name, start_time, e.kind, request_id)
                if handle.lifecycle_state == LifecycleState.RUNNING:
                    # The runtime found the container stopped behind our back
                    await self._mark_stopped(record, request_id)
                raise
            except ChainlabError as e:
                self._audit_command(handle, resolved.route.name, start_time, e.kind, request_id)
                raise
            self._audit_command(handle, resolved.route.name, start_time, None, request_id)
            return result

    async def _transition(
        self,
        record: OwnerRecord,
        operation: str,
        step: Awaitable[SandboxHandle],
        *,
        request_id: Optional[str] = None,
        stale_state: LifecycleState = LifecycleState.UNPROVISIONED,
    ) -> OwnerRecord:
        """
        Run one lifecycle step and persist its result.

        On StaleHandle the handle is moved to `stale_state`. For REMOVED
        (teardown) that is the success outcome; otherwise the error is
        re-raised after the reset is stored.
        """
        handle = record.handle
        try:
            new_handle = await step
        except StaleHandle:
            if stale_state == LifecycleState.REMOVED:
                logger.warning(
                    "Sandbox %s for %s already gone during %s; marking removed",
                    handle.runtime_instance_id,
                    handle.owner_id,
                    operation,
                )
                removed = record.with_handle(handle.transition(LifecycleState.REMOVED))
                await self._persist(removed, operation, handle.runtime_instance_id, request_id)
                self._audit_transition(
                    AuditEventType.SANDBOX_REMOVED, handle, request_id, stale=True
                )
                return removed
            await self._reset_stale(record, operation, request_id)
            raise
        except InconsistentState as e:
            self._report_reconciliation(e, operation, request_id)
            raise
        except asyncio.CancelledError:
            logger.error(
                "Runtime %s for %s cancelled (instance %s, outcome unknown); "
                "requires out-of-band reconciliation",
                operation,
                handle.owner_id,
                handle.runtime_instance_id,
            )
            if self._audit is not None:
                self._audit.log_reconciliation_required(
                    owner_id=handle.owner_id,
                    instance_id=handle.runtime_instance_id,
                    operation=operation,
                    reason="cancelled",
                    request_id=request_id,
                )
            raise

        if new_handle is handle:
            return record

        updated = record.with_handle(new_handle)
        await self._persist(updated, operation, new_handle.runtime_instance_id, request_id)
        logger.info(
            "Sandbox for %s: %s -> %s (%s, instance %s)",
            handle.owner_id,
            handle.lifecycle_state.value,
            new_handle.lifecycle_state.value,
            operation,
            new_handle.runtime_instance_id or handle.runtime_instance_id,
        )
        self._audit_transition(
            _TRANSITION_EVENTS[new_handle.lifecycle_state],
            new_handle if new_handle.runtime_instance_id else handle,
            request_id,
        )
        return updated

    async def _persist(
        self,
        record: OwnerRecord,
        operation: str,
        instance_id: Optional[str],
        request_id: Optional[str],
    ) -> None:
        """Write the record; a failure here means runtime and store disagree."""
        try:
            await self._store.put(record)
        except StoreError as e:
            error = InconsistentState(
                f"Runtime {operation} succeeded for {record.owner_id} but the handle "
                f"could not be persisted: {e.message}",
                owner_id=record.owner_id,
                instance_id=instance_id,
                outcome="applied",
                details={"operation": operation},
            )
            self._report_reconciliation(error, operation, request_id)
            raise error from e

    async def _reset_stale(self, record: OwnerRecord, operation: str, request_id: Optional[str]) -> None:
        handle = record.handle
        logger.warning(
            "Sandbox %s for %s no longer exists (seen during %s); resetting to unprovisioned",
            handle.runtime_instance_id,
            handle.owner_id,
            operation,
        )
        if await self._store_external_change(record, LifecycleState.UNPROVISIONED):
            self._audit_transition(
                AuditEventType.STALE_HANDLE_RESET, handle, request_id, operation=operation
            )

    async def _mark_stopped(self, record: OwnerRecord, request_id: Optional[str]) -> None:
        handle = record.handle
        logger.warning(
            "Sandbox %s for %s is not running although recorded as running; marking stopped",
            handle.runtime_instance_id,
            handle.owner_id,
        )
        if await self._store_external_change(record, LifecycleState.STOPPED):
            self._audit_transition(
                AuditEventType.SANDBOX_STOPPED, handle, request_id, external=True
            )

    async def _store_external_change(self, record: OwnerRecord, state: LifecycleState) -> bool:
        """Persist a state observed in the runtime; False if the write failed."""
        try:
            await self._store.put(record.with_handle(record.handle.transition(state)))
        except StoreError as e:
            # The next call observes the same runtime state and retries.
            logger.warning(
                "Failed to persist %s for %s: %s", state.value, record.owner_id, e.message
            )
            return False
        return True

    def _report_reconciliation(
        self,
        error: InconsistentState,
        operation: str,
        request_id: Optional[str],
    ) -> None:
        logger.error(
            "Inconsistent state for %s during %s (instance %s, outcome %s); "
            "requires out-of-band reconciliation: %s",
            error.owner_id,
            operation,
            error.instance_id,
            error.outcome,
            error.message,
        )
        if self._audit is not None:
            self._audit.log_reconciliation_required(
                owner_id=error.owner_id or "",
                instance_id=error.instance_id,
                operation=operation,
                reason=error.outcome or error.kind,
                request_id=request_id,
            )

    def _audit_transition(
        self,
        event_type: AuditEventType,
        handle: SandboxHandle,
        request_id: Optional[str],
        **metadata: object,
    ) -> None:
        if self._audit is None:
            return
        self._audit.log_transition(
            event_type,
            owner_id=handle.owner_id,
            instance_id=handle.runtime_instance_id,
            request_id=request_id,
            **metadata,
        )

    def _audit_command(
        self,
        handle: SandboxHandle,
        route: str,
        start_time: float,
        error_category: Optional[str],
        request_id: Optional[str],
    ) -> None:
        if self._audit is None:
            return
        self._audit.log_command(
            owner_id=handle.owner_id,
            instance_id=handle.runtime_instance_id,
            route=route,
            execution_time_ms=(time.perf_counter() - start_time) * 1000,
            error_category=error_category,
            request_id=request_id,
        )
