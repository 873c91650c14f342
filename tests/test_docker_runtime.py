"""
DockerRuntime tests.

Unit tests drive the adapter with a mocked low-level APIClient to pin the
error translation. The integration test needs a Docker daemon:

    pytest -m integration tests/test_docker_runtime.py
"""

from __future__ import annotations

import os
from unittest.mock import MagicMock, patch

import pytest
from docker.errors import APIError, DockerException, ImageNotFound, NotFound
from requests.exceptions import ConnectionError as RequestsConnectionError

from chainlab.exceptions import (
    ConflictError,
    ProvisioningError,
    RuntimeUnavailable,
    SandboxNotReady,
    StaleHandle,
    TransportError,
)
from chainlab.runtime import MANAGED_LABEL, OWNER_LABEL, DockerRuntime
from chainlab.stream import STDERR, STDOUT, demultiplex, encode_frame


def _api_error(status: int, message: str = "boom") -> APIError:
    return APIError(message, response=MagicMock(status_code=status), explanation=message)


@pytest.fixture
def client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def runtime(client: MagicMock) -> DockerRuntime:
    return DockerRuntime(client=client)


# =============================================================================
# LIFECYCLE CALLS
# =============================================================================


@pytest.mark.anyio
async def test_create_labels_container(runtime, client) -> None:
    client.create_container.return_value = {"Id": "abc123", "Warnings": []}

    instance_id = await runtime.create("chain-proxy", ["serve"], labels={OWNER_LABEL: "alice"})

    assert instance_id == "abc123"
    kwargs = client.create_container.call_args.kwargs
    assert kwargs["image"] == "chain-proxy"
    assert kwargs["command"] == ["serve"]
    assert kwargs["labels"] == {MANAGED_LABEL: "true", OWNER_LABEL: "alice"}


@pytest.mark.anyio
async def test_remove_is_forced_by_default(runtime, client) -> None:
    await runtime.remove("abc123")
    client.remove_container.assert_called_once_with("abc123", force=True)


@pytest.mark.anyio
async def test_missing_image_is_provisioning_error(runtime, client) -> None:
    client.create_container.side_effect = ImageNotFound("No such image: chain-proxy")

    with pytest.raises(ProvisioningError) as exc_info:
        await runtime.create("chain-proxy")

    assert exc_info.value.code == "image_not_found"


@pytest.mark.anyio
@pytest.mark.parametrize("operation", ["start", "stop", "remove"])
async def test_missing_container_is_stale(runtime, client, operation) -> None:
    method = {"start": "start", "stop": "stop", "remove": "remove_container"}[operation]
    getattr(client, method).side_effect = NotFound("No such container: abc123")

    with pytest.raises(StaleHandle) as exc_info:
        await getattr(runtime, operation)("abc123")

    assert exc_info.value.instance_id == "abc123"


@pytest.mark.anyio
async def test_server_error_is_unavailable(runtime, client) -> None:
    client.start.side_effect = _api_error(500)

    with pytest.raises(RuntimeUnavailable) as exc_info:
        await runtime.start("abc123")

    assert exc_info.value.retryable


@pytest.mark.anyio
async def test_refused_transition_is_conflict(runtime, client) -> None:
    client.stop.side_effect = _api_error(409, "container is paused")

    with pytest.raises(ConflictError) as exc_info:
        await runtime.stop("abc123")

    assert exc_info.value.operation == "stop"


@pytest.mark.anyio
async def test_rejected_create_is_provisioning_error(runtime, client) -> None:
    client.create_container.side_effect = _api_error(400, "invalid reference format")

    with pytest.raises(ProvisioningError):
        await runtime.create("Not A Valid Image")


@pytest.mark.anyio
async def test_connection_failure_is_unavailable(runtime, client) -> None:
    client.start.side_effect = RequestsConnectionError("connection refused")

    with pytest.raises(RuntimeUnavailable):
        await runtime.start("abc123")


@pytest.mark.anyio
async def test_daemon_unreachable_on_first_use() -> None:
    runtime = DockerRuntime()
    with patch("chainlab.runtime.docker_runtime.docker.from_env", side_effect=DockerException("no socket")):
        with pytest.raises(RuntimeUnavailable):
            await runtime.start("abc123")
        assert await runtime.ping() is False


@pytest.mark.anyio
async def test_ping(runtime, client) -> None:
    client.ping.return_value = True
    assert await runtime.ping() is True

    client.ping.side_effect = RequestsConnectionError("down")
    assert await runtime.ping() is False


# =============================================================================
# EXEC
# =============================================================================


@pytest.mark.anyio
async def test_exec_attach_streams_raw_frames(runtime, client) -> None:
    sock = MagicMock()
    client.exec_create.return_value = {"Id": "exec-1"}
    client.exec_inspect.return_value = {"ExitCode": 0}
    client.exec_start.return_value = sock
    frames = encode_frame(STDOUT, b"pong") + encode_frame(STDERR, b"warn")

    with patch(
        "chainlab.runtime.docker_runtime.read_socket",
        side_effect=[frames[:5], None, frames[5:], b""],
    ):
        chunks = [chunk async for chunk in runtime.exec_attach("abc123", ["curl", "http://x/ping"])]

    assert demultiplex(chunks) == (b"pong", b"warn")
    create_kwargs = client.exec_create.call_args.kwargs
    assert create_kwargs["cmd"] == ["curl", "http://x/ping"]
    assert create_kwargs["tty"] is False
    client.exec_start.assert_called_once_with("exec-1", socket=True)
    sock.close.assert_called_once()


@pytest.mark.anyio
async def test_exec_on_stopped_container_is_not_ready(runtime, client) -> None:
    client.exec_create.side_effect = _api_error(409, "container abc123 is not running")

    with pytest.raises(SandboxNotReady):
        async for _ in runtime.exec_attach("abc123", ["true"]):
            pass


@pytest.mark.anyio
async def test_exec_socket_closed_when_consumer_stops(runtime, client) -> None:
    sock = MagicMock()
    client.exec_create.return_value = {"Id": "exec-1"}
    client.exec_start.return_value = sock

    with patch(
        "chainlab.runtime.docker_runtime.read_socket",
        return_value=encode_frame(STDOUT, b"x"),
    ):
        stream = runtime.exec_attach("abc123", ["yes"])
        await stream.__anext__()
        await stream.aclose()

    sock.close.assert_called_once()


@pytest.mark.anyio
async def test_exec_that_cannot_start_curl_is_transport_error(runtime, client) -> None:
    sock = MagicMock()
    client.exec_create.return_value = {"Id": "exec-1"}
    client.exec_start.return_value = sock
    client.exec_inspect.return_value = {"ExitCode": 127}
    output = encode_frame(STDOUT, b'OCI runtime exec failed: exec: "curl": executable file not found')

    with patch("chainlab.runtime.docker_runtime.read_socket", side_effect=[output, b""]):
        with pytest.raises(TransportError) as exc_info:
            async for _ in runtime.exec_attach("abc123", ["curl", "http://x/ping"]):
                pass

    assert exc_info.value.code == "exec_not_started"
    client.exec_inspect.assert_called_once_with("exec-1")
    sock.close.assert_called_once()


@pytest.mark.anyio
async def test_exec_exit_code_of_command_is_left_to_caller(runtime, client) -> None:
    client.exec_create.return_value = {"Id": "exec-1"}
    client.exec_start.return_value = MagicMock()
    client.exec_inspect.return_value = {"ExitCode": 7}

    with patch("chainlab.runtime.docker_runtime.read_socket", side_effect=[b""]):
        chunks = [chunk async for chunk in runtime.exec_attach("abc123", ["curl", "http://x/ping"])]

    assert chunks == []


# =============================================================================
# INTEGRATION
# =============================================================================


def _docker_available() -> bool:
    try:
        import docker

        return bool(docker.from_env().ping())
    except Exception:  # noqa: BLE001
        return False


@pytest.mark.integration
@pytest.mark.anyio
async def test_docker_round_trip() -> None:
    if not _docker_available():
        pytest.skip("Docker daemon not reachable")

    image = os.getenv("CHAINLAB_TEST_IMAGE", "alpine:3")
    runtime = DockerRuntime()
    instance_id = await runtime.create(image, ["sleep", "60"], labels={OWNER_LABEL: "itest"})
    try:
        await runtime.start(instance_id)
        chunks = [
            chunk
            async for chunk in runtime.exec_attach(
                instance_id, ["sh", "-c", "echo out; echo err >&2"]
            )
        ]
        assert demultiplex(chunks) == (b"out\n", b"err\n")
        await runtime.stop(instance_id)
    finally:
        await runtime.remove(instance_id)

    with pytest.raises(StaleHandle):
        await runtime.start(instance_id)
