from __future__ import annotations

from typing import Protocol

from chainlab.models import OwnerRecord


class IdentityStore(Protocol):
    """Persistence for owner records keyed by owner id."""

    async def get(self, owner_id: str) -> OwnerRecord:
        """
        Raises:
            OwnerNotFound: If no record exists.
            StoreError: If the record could not be read.
        """
        ...

    async def put(self, record: OwnerRecord) -> None:
        """
        Raises:
            StoreError: If the record could not be written durably.
        """
        ...
