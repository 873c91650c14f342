"""Tests for LifecycleManager state transitions."""

import asyncio

import pytest

from chainlab.exceptions import (
    ConflictError,
    InconsistentState,
    RuntimeUnavailable,
    StaleHandle,
)
from chainlab.lifecycle import LifecycleManager
from chainlab.models import LifecycleState, SandboxHandle
from chainlab.runtime import OWNER_LABEL
from tests.fakes.runtime import FakeRuntime


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def manager(runtime: FakeRuntime) -> LifecycleManager:
    return LifecycleManager(runtime, timeout_seconds=1.0)


async def _created(manager: LifecycleManager, owner: str = "alice") -> SandboxHandle:
    return await manager.provision(SandboxHandle.unprovisioned(owner), "sandbox-img")


@pytest.mark.anyio
async def test_provision_creates_labelled_instance(manager, runtime) -> None:
    handle = await _created(manager)

    assert handle.lifecycle_state == LifecycleState.CREATED
    assert handle.runtime_instance_id in runtime.instances
    assert runtime.images[handle.runtime_instance_id] == "sandbox-img"
    assert runtime.labels[handle.runtime_instance_id][OWNER_LABEL] == "alice"


@pytest.mark.anyio
async def test_provision_twice_is_a_conflict(manager, runtime) -> None:
    handle = await _created(manager)

    with pytest.raises(ConflictError) as exc_info:
        await manager.provision(handle, "sandbox-img")

    assert exc_info.value.operation == "provision"
    assert len(runtime.calls_for("create")) == 1


@pytest.mark.anyio
async def test_provision_after_removal(manager, runtime) -> None:
    removed = await manager.remove(await _created(manager))

    handle = await manager.provision(removed, "sandbox-img")

    assert handle.lifecycle_state == LifecycleState.CREATED
    assert len(runtime.calls_for("create")) == 2


@pytest.mark.anyio
async def test_start_from_created_and_stopped(manager, runtime) -> None:
    running = await manager.start(await _created(manager))
    assert running.lifecycle_state == LifecycleState.RUNNING

    stopped = await manager.stop(running)
    assert stopped.lifecycle_state == LifecycleState.STOPPED

    restarted = await manager.start(stopped)
    assert restarted.lifecycle_state == LifecycleState.RUNNING
    assert runtime.instances[restarted.runtime_instance_id] == "running"


@pytest.mark.anyio
async def test_start_when_running_is_a_noop(manager, runtime) -> None:
    running = await manager.start(await _created(manager))
    runtime.calls.clear()

    again = await manager.start(running)

    assert again is running
    assert runtime.calls == []


@pytest.mark.anyio
async def test_stop_when_stopped_is_a_noop(manager, runtime) -> None:
    stopped = await manager.stop(await manager.start(await _created(manager)))
    runtime.calls.clear()

    assert await manager.stop(stopped) is stopped
    assert runtime.calls == []


@pytest.mark.anyio
@pytest.mark.parametrize("operation", ["start", "stop", "remove"])
async def test_transitions_refused_without_instance(manager, runtime, operation) -> None:
    handle = SandboxHandle.unprovisioned("alice")

    with pytest.raises(ConflictError):
        await getattr(manager, operation)(handle)

    assert runtime.calls == []


@pytest.mark.anyio
async def test_stop_from_created_is_a_conflict(manager, runtime) -> None:
    created = await _created(manager)

    with pytest.raises(ConflictError) as exc_info:
        await manager.stop(created)

    assert exc_info.value.state == "created"
    assert runtime.calls_for("stop") == []


@pytest.mark.anyio
async def test_remove_running_instance_forces(manager, runtime) -> None:
    running = await manager.start(await _created(manager))

    removed = await manager.remove(running)

    assert removed.lifecycle_state == LifecycleState.REMOVED
    assert removed.runtime_instance_id is None
    assert runtime.instances == {}


@pytest.mark.anyio
async def test_missing_instance_surfaces_stale_handle(manager, runtime) -> None:
    created = await _created(manager)
    runtime.delete_externally(created.runtime_instance_id)

    with pytest.raises(StaleHandle) as exc_info:
        await manager.start(created)

    assert exc_info.value.instance_id == created.runtime_instance_id


@pytest.mark.anyio
async def test_runtime_failures_are_not_retried(manager, runtime) -> None:
    created = await _created(manager)
    runtime.fail["start"] = RuntimeUnavailable("daemon restarting")

    with pytest.raises(RuntimeUnavailable) as exc_info:
        await manager.start(created)

    assert exc_info.value.retryable
    assert len(runtime.calls_for("start")) == 1


@pytest.mark.anyio
async def test_timeout_reports_unknown_outcome(manager, runtime) -> None:
    created = await _created(manager)
    runtime.hang.add("start")

    with pytest.raises(InconsistentState) as exc_info:
        await manager.start(created, timeout=0.05)

    assert exc_info.value.outcome == "unknown"
    assert exc_info.value.instance_id == created.runtime_instance_id
    assert not exc_info.value.retryable


@pytest.mark.anyio
async def test_cancellation_propagates(manager, runtime) -> None:
    created = await _created(manager)
    runtime.hang.add("start")

    task = asyncio.ensure_future(manager.start(created))
    await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
