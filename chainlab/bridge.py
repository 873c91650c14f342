"""
Command Bridge: runs control-plane requests inside a sandbox.

A CommandRequest is turned into a curl invocation against the control plane
listening on a fixed local port inside the container, executed through the
runtime's exec-attach, and its multiplexed output split into stdout and
stderr.

Classification:
- curl reported its own failure on stderr, or the exec itself never
  started -> TransportError
- anything else that ran to completion -> CommandResult(succeeded=True),
  even when the body is an application-level error

Usage:
    bridge = CommandBridge(runtime)
    result = await bridge.execute(handle, CommandRequest("/ping"), timeout=10)
    print(result.text)
"""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Pattern, Sequence, Tuple

from chainlab.exceptions import ExecTimeout, SandboxNotReady, TransportError
from chainlab.models import CommandRequest, CommandResult, LifecycleState, SandboxHandle
from chainlab.routes import ResolvedRoute, validate_command
from chainlab.runtime.protocol import ContainerRuntime, ExecStream
from chainlab.stream import StreamDemuxer

logger = logging.getLogger(__name__)

# Stderr lines meaning the request never reached the control plane. Only
# stderr is checked; stdout is the control plane's response body.
TRANSPORT_FAILURE_SIGNATURES: Sequence[Pattern[str]] = (
    re.compile(r"^curl: \(\d+\)", re.MULTILINE),
    re.compile(r"^OCI runtime exec failed", re.MULTILINE),
    re.compile(r"executable file not found"),
)


@dataclass(frozen=True)
class BridgeConfig:
    """Where the control plane listens inside the sandbox."""

    host: str = "localhost"
    port: int = 8080
    curl: str = "curl"


def transport_failure(stderr: str) -> Optional[str]:
    """Return the first transport-failure signature found in stderr, if any."""
    for pattern in TRANSPORT_FAILURE_SIGNATURES:
        match = pattern.search(stderr)
        if match:
            return match.group(0)
    return None


class CommandBridge:
    """Executes validated commands against a RUNNING sandbox."""

    def __init__(
        self,
        runtime: ContainerRuntime,
        config: Optional[BridgeConfig] = None,
        *,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._runtime = runtime
        self._config = config or BridgeConfig()
        self._timeout = timeout_seconds

    def build_argv(self, resolved: ResolvedRoute, payload: bytes = b"") -> List[str]:
        cfg = self._config
        argv = [
            cfg.curl,
            "-sS",
            "-X",
            resolved.method,
            "-H",
            "Content-Type: application/json",
        ]
        if payload:
            # --data-raw never treats a leading @ as a file to read
            argv += ["--data-raw", payload.decode("utf-8")]
        argv.append(f"http://{cfg.host}:{cfg.port}{resolved.path}")
        return argv

    async def execute(
        self,
        handle: SandboxHandle,
        command: CommandRequest,
        *,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """
        Run one command and classify its output.

        Raises:
            UnknownRoute, InvalidCommand: If the command fails validation.
            SandboxNotReady: If the handle is not RUNNING.
            ExecTimeout: If the deadline expires; the side effect may have happened.
            TransportError: If the request never reached the control plane.
        """
        resolved = validate_command(command)
        if handle.lifecycle_state != LifecycleState.RUNNING:
            raise SandboxNotReady(
                f"Sandbox for {handle.owner_id} is {handle.lifecycle_state.value}, not running",
                state=handle.lifecycle_state.value,
            )
        assert handle.runtime_instance_id is not None

        argv = self.build_argv(resolved, command.payload)
        deadline = self._timeout if timeout is None else timeout
        stream = self._runtime.exec_attach(handle.runtime_instance_id, argv)
        try:
            stdout, stderr = await asyncio.wait_for(self._collect(stream), timeout=deadline)
        except asyncio.TimeoutError:
            raise ExecTimeout(
                f"{resolved.method} {resolved.path} in sandbox for {handle.owner_id} "
                f"exceeded {deadline}s",
                timeout_seconds=deadline,
            )

        stderr_text = stderr.decode("utf-8", errors="replace")
        signature = transport_failure(stderr_text)
        if signature:
            logger.info(
                "Transport failure for %s %s (owner %s): %s",
                resolved.method,
                resolved.path,
                handle.owner_id,
                signature,
            )
            raise TransportError(
                f"Request to {resolved.path} did not reach the sandbox control plane: {signature}",
                stdout=stdout.decode("utf-8", errors="replace"),
                stderr=stderr_text,
            )
        return CommandResult(stdout=stdout, stderr=stderr, succeeded=True)

    @staticmethod
    async def _collect(stream: ExecStream) -> Tuple[bytes, bytes]:
        demux = StreamDemuxer()
        try:
            async for chunk in stream:
                demux.feed(chunk)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
        return demux.finish()
