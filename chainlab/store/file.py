"""
JSON file identity store.

Layout: one document per owner, `<root>/<owner_id>.json`. Writes go to a
temporary file in the same directory and are moved into place with
os.replace(), so a crash never leaves a half-written record behind.

Usage:
    from chainlab.store import JsonFileIdentityStore

    store = JsonFileIdentityStore("./chainlab-data")
    await store.create_owner("alice")
    record = await store.get("alice")
"""
from __future__ import annotations

import asyncio
import os
import re
import tempfile
from pathlib import Path
from typing import Callable, List, TypeVar, Union

from pydantic import ValidationError

from chainlab.exceptions import ConflictError, OwnerNotFound, StoreError
from chainlab.models import OwnerRecord

T = TypeVar("T")

# Owner ids become file names; keep them to a portable, traversal-free set.
_SAFE_OWNER_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._@-]{0,127}$")


class JsonFileIdentityStore:
    """Owner records persisted as JSON files under a root directory."""

    def __init__(self, root: Union[str, Path]) -> None:
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)
        self._write_lock = asyncio.Lock()

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, owner_id: str) -> Path:
        if not _SAFE_OWNER_ID.match(owner_id) or ".." in owner_id:
            raise StoreError(f"Owner id not usable as a file name: {owner_id!r}", code="invalid_owner_id")
        return self._root / f"{owner_id}.json"

    async def get(self, owner_id: str) -> OwnerRecord:
        path = self._path(owner_id)
        try:
            raw = await self._offload(path.read_text, "utf-8")
        except FileNotFoundError:
            raise OwnerNotFound(f"Owner not found: {owner_id}")
        except OSError as e:
            raise StoreError(f"Failed to read record for {owner_id}: {e}") from e
        try:
            return OwnerRecord.model_validate_json(raw)
        except ValidationError as e:
            raise StoreError(f"Corrupt record for {owner_id}: {e}", code="corrupt_record") from e

    async def put(self, record: OwnerRecord) -> None:
        path = self._path(record.owner_id)
        raw = record.model_dump_json(indent=2)
        async with self._write_lock:
            try:
                await self._offload(self._write_atomic, path, raw)
            except OSError as e:
                raise StoreError(f"Failed to write record for {record.owner_id}: {e}") from e

    async def create_owner(self, owner_id: str, **attributes: object) -> OwnerRecord:
        """
        Register a new owner with an unprovisioned sandbox.

        Raises:
            ConflictError: If the owner already exists.
        """
        path = self._path(owner_id)
        record = OwnerRecord(owner_id=owner_id, **attributes)
        async with self._write_lock:
            if path.exists():
                raise ConflictError(f"Owner already exists: {owner_id}", operation="create_owner")
            try:
                await self._offload(self._write_atomic, path, record.model_dump_json(indent=2))
            except OSError as e:
                raise StoreError(f"Failed to write record for {owner_id}: {e}") from e
        return record

    async def owner_ids(self) -> List[str]:
        return sorted(p.stem for p in self._root.glob("*.json"))

    def _write_atomic(self, path: Path, raw: str) -> None:
        fd, tmp = tempfile.mkstemp(dir=self._root, prefix=f".{path.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(raw)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except BaseException:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise

    @staticmethod
    async def _offload(fn: Callable[..., T], *args: object) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)
