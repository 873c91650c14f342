"""
In-memory identity store.

Records are stored serialized so callers never share mutable state with the
store: every get() hands out a fresh OwnerRecord.
"""
from __future__ import annotations

import asyncio
from typing import Dict, List

from chainlab.exceptions import ConflictError, OwnerNotFound
from chainlab.models import OwnerRecord


class InMemoryIdentityStore:
    """
    In-memory owner record storage.

    Safe for concurrent use from one event loop.
    """

    def __init__(self) -> None:
        self._records: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get(self, owner_id: str) -> OwnerRecord:
        async with self._lock:
            raw = self._records.get(owner_id)
        if raw is None:
            raise OwnerNotFound(f"Owner not found: {owner_id}")
        return OwnerRecord.model_validate_json(raw)

    async def put(self, record: OwnerRecord) -> None:
        raw = record.model_dump_json()
        async with self._lock:
            self._records[record.owner_id] = raw

    async def create_owner(self, owner_id: str, **attributes: object) -> OwnerRecord:
        """
        Register a new owner with an unprovisioned sandbox.

        Raises:
            ConflictError: If the owner already exists.
        """
        record = OwnerRecord(owner_id=owner_id, **attributes)
        raw = record.model_dump_json()
        async with self._lock:
            if owner_id in self._records:
                raise ConflictError(f"Owner already exists: {owner_id}", operation="create_owner")
            self._records[owner_id] = raw
        return record

    async def owner_ids(self) -> List[str]:
        async with self._lock:
            return sorted(self._records)
