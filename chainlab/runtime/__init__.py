from chainlab.runtime.protocol import ContainerRuntime, ExecStream, MANAGED_LABEL, OWNER_LABEL
from chainlab.runtime.docker_runtime import DockerRuntime

__all__ = [
    # Protocol
    "ContainerRuntime",
    "ExecStream",
    "MANAGED_LABEL",
    "OWNER_LABEL",
    # Runtimes
    "DockerRuntime",
]
