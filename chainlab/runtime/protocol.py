from __future__ import annotations

from typing import AsyncIterator, Dict, Optional, Protocol, Sequence

# Raw multiplexed exec output, chunked however the transport delivers it.
ExecStream = AsyncIterator[bytes]

OWNER_LABEL = "chainlab.owner"
MANAGED_LABEL = "chainlab.managed"


class ContainerRuntime(Protocol):
    """
    Container engine consumed by the Lifecycle Manager and Command Bridge.

    Implementations translate engine failures into chainlab exceptions:
    StaleHandle for unknown instances, RuntimeUnavailable for transient
    infrastructure errors, ConflictError when the engine refuses a
    transition. They never retry.
    """

    async def create(
        self,
        image: str,
        command: Optional[Sequence[str]] = None,
        labels: Optional[Dict[str, str]] = None,
    ) -> str:
        ...

    async def start(self, instance_id: str) -> None:
        ...

    async def stop(self, instance_id: str) -> None:
        ...

    async def remove(self, instance_id: str, force: bool = True) -> None:
        ...

    def exec_attach(self, instance_id: str, argv: Sequence[str]) -> ExecStream:
        """Spawn argv inside the instance and stream its multiplexed stdout/stderr."""
        ...

    async def ping(self) -> bool:
        ...
