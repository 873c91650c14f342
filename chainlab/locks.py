"""
Per-owner lock registry.

Operations on one owner's sandbox run one at a time; different owners never
contend. Locks exist only while someone holds or waits on them, so the
registry does not grow with the number of owners ever seen.

Serialization is per process. Several orchestrator processes sharing one
identity store need an external lock.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict


@dataclass
class _Entry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class OwnerLocks:
    """Refcounted asyncio locks keyed by owner id."""

    def __init__(self) -> None:
        self._entries: Dict[str, _Entry] = {}

    @asynccontextmanager
    async def hold(self, owner_id: str) -> AsyncIterator[None]:
        entry = self._entries.get(owner_id)
        if entry is None:
            entry = self._entries[owner_id] = _Entry()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[owner_id]

    def is_locked(self, owner_id: str) -> bool:
        entry = self._entries.get(owner_id)
        return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        return len(self._entries)
