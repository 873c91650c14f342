from __future__ import annotations

from chainlab.exceptions import StoreError
from chainlab.models import OwnerRecord
from chainlab.store import InMemoryIdentityStore


class FlakyStore(InMemoryIdentityStore):
    """In-memory store whose next `fail_puts` writes raise StoreError."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_puts = 0
        self.puts = 0

    async def put(self, record: OwnerRecord) -> None:
        self.puts += 1
        if self.fail_puts > 0:
            self.fail_puts -= 1
            raise StoreError("disk full")
        await super().put(record)
