"""
Vault Store — Remote object store contract and in-process backend.

One record type keyed by ``(owner_id, fingerprint)``:
    {payload, entry_nonce, session_nonce, created_at}

All fields are opaque bytes to the store. The store enforces that only the
owner mutates its entries; callers pass the owner ID on every call.
"""
import time
import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from .exceptions import DuplicateKey, EntryNotFound

logger = logging.getLogger("safekey.vault")


@dataclass(frozen=True)
class EntryRecord:
    """Stored fields needed to decrypt one vault entry."""

    payload: bytes
    entry_nonce: bytes
    session_nonce: bytes
    created_at: int

    def __repr__(self) -> str:
        return (
            f"<EntryRecord payload={len(self.payload)}B "
            f"entry_nonce={len(self.entry_nonce)}B "
            f"session_nonce={len(self.session_nonce)}B "
            f"created_at={self.created_at}>"
        )


@runtime_checkable
class VaultStore(Protocol):
    """Remote object store consumed by the entry lifecycle."""

    async def exists(self, owner_id: str, fingerprint: bytes) -> bool:
        ...

    async def create(
        self,
        owner_id: str,
        fingerprint: bytes,
        payload: bytes,
        entry_nonce: bytes,
        session_nonce: bytes,
    ) -> None:
        """Insert a new entry; raise ``DuplicateKey`` if one exists."""
        ...

    async def replace(
        self,
        owner_id: str,
        fingerprint: bytes,
        payload: bytes,
        entry_nonce: bytes,
        session_nonce: bytes,
    ) -> None:
        """Overwrite an entry; raise ``EntryNotFound`` if none exists."""
        ...

    async def fetch(self, owner_id: str, fingerprint: bytes) -> EntryRecord | None:
        ...

    async def remove(self, owner_id: str, fingerprint: bytes) -> None:
        """Delete an entry. Deleting a missing entry is not an error."""
        ...

    async def list_fingerprints(self, owner_id: str) -> list[bytes]:
        ...


class MemoryVaultStore:
    """In-process ``VaultStore``.

    Mutations are serialized by an ``asyncio.Lock``, mirroring the
    compare-and-swap guarantees of a real object store.
    """

    def __init__(self):
        self._entries: dict[tuple[str, bytes], EntryRecord] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def raw_put(self, owner_id: str, fingerprint: bytes, record: EntryRecord) -> None:
        """Place a record without checks (fixtures, migrations)."""
        self._entries[(owner_id, bytes(fingerprint))] = record

    async def exists(self, owner_id: str, fingerprint: bytes) -> bool:
        return (owner_id, bytes(fingerprint)) in self._entries

    async def create(
        self,
        owner_id: str,
        fingerprint: bytes,
        payload: bytes,
        entry_nonce: bytes,
        session_nonce: bytes,
    ) -> None:
        key = (owner_id, bytes(fingerprint))
        async with self._lock:
            if key in self._entries:
                raise DuplicateKey("Entry already exists for fingerprint")
            self._entries[key] = EntryRecord(
                payload=bytes(payload),
                entry_nonce=bytes(entry_nonce),
                session_nonce=bytes(session_nonce),
                created_at=int(time.time() * 1000),
            )

    async def replace(
        self,
        owner_id: str,
        fingerprint: bytes,
        payload: bytes,
        entry_nonce: bytes,
        session_nonce: bytes,
    ) -> None:
        key = (owner_id, bytes(fingerprint))
        async with self._lock:
            current = self._entries.get(key)
            if current is None:
                raise EntryNotFound("No entry for fingerprint")
            self._entries[key] = EntryRecord(
                payload=bytes(payload),
                entry_nonce=bytes(entry_nonce),
                session_nonce=bytes(session_nonce),
                created_at=current.created_at,
            )

    async def fetch(self, owner_id: str, fingerprint: bytes) -> EntryRecord | None:
        return self._entries.get((owner_id, bytes(fingerprint)))

    async def remove(self, owner_id: str, fingerprint: bytes) -> None:
        async with self._lock:
            self._entries.pop((owner_id, bytes(fingerprint)), None)

    async def list_fingerprints(self, owner_id: str) -> list[bytes]:
        return [fp for owner, fp in self._entries if owner == owner_id]
