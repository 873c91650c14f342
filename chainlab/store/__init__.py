"""
Identity store implementations.

The store owns OwnerRecord persistence; the sandbox handle lives inside the
record, so a handle update is a full-record write.

Provides:
- IdentityStore: protocol consumed by the orchestrator
- InMemoryIdentityStore: process-local store (tests, single-process dev)
- JsonFileIdentityStore: one JSON document per owner on disk
"""
from chainlab.store.protocol import IdentityStore
from chainlab.store.memory import InMemoryIdentityStore
from chainlab.store.file import JsonFileIdentityStore

__all__ = [
    "IdentityStore",
    "InMemoryIdentityStore",
    "JsonFileIdentityStore",
]
