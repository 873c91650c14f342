"""
Docker Engine adapter for the ContainerRuntime protocol.

Uses the low-level Docker SDK client. The SDK is blocking, so every call runs
on the default executor and the event loop stays free for other owners.

Exec output is read from the raw attach socket and handed to the caller
still multiplexed; splitting stdout from stderr is the Command Bridge's job.

Usage:
    from chainlab.runtime import DockerRuntime

    runtime = DockerRuntime()                      # DOCKER_HOST / defaults
    runtime = DockerRuntime(base_url="unix:///var/run/docker.sock")

    instance_id = await runtime.create("chain-proxy")
    await runtime.start(instance_id)
    async for chunk in runtime.exec_attach(instance_id, ["curl", "-sS", "http://localhost:8080/ping"]):
        ...

Requirements:
    - Docker daemon reachable from this process
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Sequence, TypeVar

import docker
from docker.errors import APIError, DockerException, ImageNotFound, NotFound
from docker.utils.socket import read as read_socket
from requests.exceptions import RequestException

from chainlab.exceptions import (
    ConflictError,
    ProvisioningError,
    RuntimeUnavailable,
    SandboxNotReady,
    StaleHandle,
    TransportError,
)
from chainlab.runtime.protocol import MANAGED_LABEL, ExecStream

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Exit codes the exec runtime uses when the command itself could not start
# (126 not executable, 127 not found).
EXEC_NOT_STARTED_CODES = (126, 127)


class DockerRuntime:
    """
    ContainerRuntime backed by a Docker daemon.

    The client is created lazily so constructing the runtime never touches
    the daemon; the first failing call surfaces RuntimeUnavailable instead.
    """

    def __init__(
        self,
        client: Optional[docker.APIClient] = None,
        *,
        base_url: Optional[str] = None,
        api_version: str = "auto",
        timeout: int = 60,
        stop_timeout: int = 10,
        chunk_size: int = 4096,
    ) -> None:
        self._client = client
        self._base_url = base_url
        self._api_version = api_version
        self._timeout = timeout
        self._stop_timeout = stop_timeout
        self._chunk_size = chunk_size

    @property
    def client(self) -> docker.APIClient:
        """Lazy initialization of the Docker API client."""
        if self._client is None:
            try:
                if self._base_url:
                    self._client = docker.APIClient(
                        base_url=self._base_url,
                        version=self._api_version,
                        timeout=self._timeout,
                    )
                else:
                    self._client = docker.from_env(
                        version=self._api_version,
                        timeout=self._timeout,
                    ).api
            except DockerException as e:
                raise RuntimeUnavailable(f"Docker daemon not available: {e}") from e
        return self._client

    async def create(
        self,
        image: str,
        command: Optional[Sequence[str]] = None,
        labels: Optional[Dict[str, str]] = None,
    ) -> str:
        all_labels = {MANAGED_LABEL: "true"}
        all_labels.update(labels or {})
        response = await self._call(
            "create",
            lambda: self.client.create_container(
                image=image,
                command=list(command) if command else None,
                labels=all_labels,
            ),
        )
        instance_id = response["Id"]
        logger.debug("Created container %s from %s", instance_id[:12], image)
        return instance_id

    async def start(self, instance_id: str) -> None:
        await self._call("start", lambda: self.client.start(instance_id), instance_id=instance_id)

    async def stop(self, instance_id: str) -> None:
        await self._call(
            "stop",
            lambda: self.client.stop(instance_id, timeout=self._stop_timeout),
            instance_id=instance_id,
        )

    async def remove(self, instance_id: str, force: bool = True) -> None:
        await self._call(
            "remove",
            lambda: self.client.remove_container(instance_id, force=force),
            instance_id=instance_id,
        )

    async def exec_attach(self, instance_id: str, argv: Sequence[str]) -> ExecStream:
        """
        Run argv in the container and yield raw multiplexed output chunks.

        The exec is created without a TTY so stdout and stderr arrive as
        separate frames. The socket is closed when the consumer stops
        iterating, including on cancellation.
        An exec whose command could not start at all (exit 126 or 127)
        raises TransportError once the stream is drained.
        """
        exec_info = await self._call(
            "exec",
            lambda: self.client.exec_create(
                instance_id,
                cmd=list(argv),
                stdout=True,
                stderr=True,
                tty=False,
            ),
            instance_id=instance_id,
        )
        sock = await self._call(
            "exec",
            lambda: self.client.exec_start(exec_info["Id"], socket=True),
            instance_id=instance_id,
        )
        loop = asyncio.get_running_loop()
        try:
            while True:
                try:
                    chunk = await loop.run_in_executor(None, read_socket, sock, self._chunk_size)
                except OSError as e:
                    raise RuntimeUnavailable(f"Exec stream interrupted: {e}") from e
                if chunk is None:
                    # Recoverable socket error (EINTR and friends); read again
                    continue
                if not chunk:
                    break
                yield chunk
            inspect = await self._call(
                "exec",
                lambda: self.client.exec_inspect(exec_info["Id"]),
                instance_id=instance_id,
            )
            exit_code = inspect.get("ExitCode")
            if exit_code in EXEC_NOT_STARTED_CODES:
                raise TransportError(
                    f"Exec in {instance_id[:12]} could not run {argv[0]} (exit {exit_code})",
                    code="exec_not_started",
                    details={"exit_code": exit_code},
                )
        finally:
            try:
                sock.close()
            except OSError as e:
                logger.debug("Failed to close exec socket for %s: %s", instance_id[:12], e)

    async def ping(self) -> bool:
        """Return True if the daemon answers."""
        try:
            return bool(await self._call("ping", lambda: self.client.ping()))
        except RuntimeUnavailable:
            return False

    async def _call(
        self,
        operation: str,
        fn: Callable[[], T],
        *,
        instance_id: Optional[str] = None,
    ) -> T:
        """Run a blocking SDK call on the executor and translate its failures."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, fn)
        except ImageNotFound as e:
            raise ProvisioningError(
                f"Sandbox image not found: {e.explanation}", code="image_not_found"
            ) from e
        except NotFound as e:
            if operation == "create":
                raise ProvisioningError(f"Docker rejected create: {e.explanation}") from e
            raise StaleHandle(
                f"Container {instance_id} no longer exists",
                instance_id=instance_id,
            ) from e
        except APIError as e:
            raise _translate_api_error(operation, instance_id, e) from e
        except RequestException as e:
            raise RuntimeUnavailable(f"Docker daemon not reachable during {operation}: {e}") from e
        except DockerException as e:
            raise RuntimeUnavailable(f"Docker error during {operation}: {e}") from e


def _translate_api_error(operation: str, instance_id: Optional[str], error: APIError) -> Exception:
    status = error.status_code
    explanation: Any = error.explanation or str(error)
    if error.is_server_error() or status is None:
        return RuntimeUnavailable(
            f"Docker {operation} failed: {explanation}",
            details={"status_code": status},
        )
    if operation == "create":
        return ProvisioningError(
            f"Docker rejected create: {explanation}",
            details={"status_code": status},
        )
    if operation == "exec" and status == 409:
        return SandboxNotReady(f"Container {instance_id} is not running: {explanation}")
    return ConflictError(
        f"Docker refused {operation} on {instance_id}: {explanation}",
        operation=operation,
        details={"status_code": status},
    )


__all__ = ["DockerRuntime"]
