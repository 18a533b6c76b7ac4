"""
Vault Entry Lifecycle — exists / upsert / fetch / delete against a VaultStore.

State machine per (owner, fingerprint):

    NO_ENTRY --create--> LIVE --replace--> LIVE --remove--> NO_ENTRY

The store has no native upsert, so ``upsert`` checks and then branches. The
window between the check and the write is closed by explicit transitions:

    absent  → create                     → CREATED
    absent  → create rejected (Duplicate) → replace → CONFLICT_REPLACED
    present → replace                    → REPLACED
    present → replace rejected (NotFound) → create  → VANISHED_CREATED

If the fallback write is rejected too, the whole check-then-branch restarts,
bounded by ``max_retries``.

Every store call is bounded by ``store_timeout``. Reads and deletes retry
``StoreUnavailable`` with exponential backoff; writes only retry by going
back through the ``exists`` check.
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Optional

from .config import VaultConfig
from .exceptions import (
    DuplicateKey,
    EntryNotFound,
    StoreTimeout,
    StoreUnavailable,
)
from .kdf import ENTRY_NONCE_SIZE, FINGERPRINT_SIZE, SESSION_NONCE_SIZE
from .legacy import normalize_nonce
from .store import EntryRecord, VaultStore

logger = logging.getLogger("safekey.vault")


class UpsertOutcome(str, Enum):
    """Transition taken by ``EntryLifecycle.upsert``."""

    CREATED = "created"
    REPLACED = "replaced"
    CONFLICT_REPLACED = "conflict_replaced"
    VANISHED_CREATED = "vanished_created"


def _short(fingerprint: bytes) -> str:
    """Loggable fingerprint prefix."""
    return bytes(fingerprint).hex()[:8]


class EntryLifecycle:
    """Check-then-branch entry protocol over a ``VaultStore``."""

    def __init__(self, store: VaultStore, config: Optional[VaultConfig] = None):
        self._store = store
        self._config = config or VaultConfig()

    @property
    def store(self) -> VaultStore:
        return self._store

    # ------------------------------------------------------------------
    # Store call helpers
    # ------------------------------------------------------------------

    async def _call(self, method: str, *args) -> Any:
        """Invoke one store method under the store timeout."""
        try:
            return await asyncio.wait_for(
                getattr(self._store, method)(*args),
                timeout=self._config.store_timeout,
            )
        except asyncio.TimeoutError as err:
            raise StoreTimeout(
                f"Store {method} timed out after {self._config.store_timeout}s"
            ) from err

    async def _retrying(self, method: str, *args) -> Any:
        """Invoke an idempotent store method, retrying transient failures."""
        attempt = 0
        while True:
            try:
                return await self._call(method, *args)
            except StoreUnavailable as err:
                if attempt >= self._config.max_retries:
                    logger.error(
                        "Store %s failed after %d attempt(s): %s",
                        method, attempt + 1, err,
                    )
                    raise
                delay = self._config.retry_backoff * (2 ** attempt)
                attempt += 1
                logger.warning(
                    "Store %s unavailable (%s), retry %d in %.2fs",
                    method, err, attempt, delay,
                )
                await asyncio.sleep(delay)

    @staticmethod
    def _check_fingerprint(fingerprint: bytes) -> bytes:
        if len(fingerprint) != FINGERPRINT_SIZE:
            raise ValueError(
                f"Fingerprint must be {FINGERPRINT_SIZE} bytes, "
                f"got {len(fingerprint)}"
            )
        return bytes(fingerprint)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def exists(self, owner_id: str, fingerprint: bytes) -> bool:
        """Read-only existence check."""
        fingerprint = self._check_fingerprint(fingerprint)
        return bool(await self._retrying("exists", owner_id, fingerprint))

    async def upsert(
        self,
        owner_id: str,
        fingerprint: bytes,
        payload: bytes,
        entry_nonce: bytes,
        session_nonce: bytes,
    ) -> UpsertOutcome:
        """Create or replace the entry for a fingerprint.

        Args:
            owner_id: Identity the store attributes the entry to.
            fingerprint: 32-byte domain fingerprint.
            payload: Ciphertext with GCM tag.
            entry_nonce: 12-byte AES-GCM IV.
            session_nonce: 16-byte HKDF info for the session key.

        Returns:
            The transition that was applied.

        Raises:
            StoreUnavailable: If the store stays unavailable after retries.
            StoreError: If conflicting writers keep racing past the retries.
        """
        fingerprint = self._check_fingerprint(fingerprint)
        if len(entry_nonce) != ENTRY_NONCE_SIZE:
            raise ValueError(
                f"Entry nonce must be {ENTRY_NONCE_SIZE} bytes, got {len(entry_nonce)}"
            )
        if len(session_nonce) != SESSION_NONCE_SIZE:
            raise ValueError(
                f"Session nonce must be {SESSION_NONCE_SIZE} bytes, "
                f"got {len(session_nonce)}"
            )
        args = (owner_id, fingerprint, bytes(payload), bytes(entry_nonce), bytes(session_nonce))
        attempt = 0
        while True:
            try:
                present = bool(await self._call("exists", owner_id, fingerprint))
                if present:
                    outcome = await self._replace_or_create(*args)
                else:
                    outcome = await self._create_or_replace(*args)
                logger.debug(
                    "Vault upsert: owner=%s fp=%s outcome=%s",
                    owner_id, _short(fingerprint), outcome.value,
                )
                return outcome
            except (StoreUnavailable, DuplicateKey, EntryNotFound) as err:
                if attempt >= self._config.max_retries:
                    raise
                attempt += 1
                logger.warning(
                    "Vault upsert for owner=%s fp=%s interrupted (%s), "
                    "re-checking entry (retry %d)",
                    owner_id, _short(fingerprint), type(err).__name__, attempt,
                )
                await asyncio.sleep(self._config.retry_backoff * attempt)

    async def _create_or_replace(self, *args) -> UpsertOutcome:
        try:
            await self._call("create", *args)
            return UpsertOutcome.CREATED
        except DuplicateKey:
            logger.info(
                "Concurrent create detected for owner=%s fp=%s, replacing",
                args[0], _short(args[1]),
            )
        await self._call("replace", *args)
        return UpsertOutcome.CONFLICT_REPLACED

    async def _replace_or_create(self, *args) -> UpsertOutcome:
        try:
            await self._call("replace", *args)
            return UpsertOutcome.REPLACED
        except EntryNotFound:
            logger.info(
                "Entry vanished before replace for owner=%s fp=%s, creating",
                args[0], _short(args[1]),
            )
        await self._call("create", *args)
        return UpsertOutcome.VANISHED_CREATED

    async def fetch(self, owner_id: str, fingerprint: bytes) -> EntryRecord | None:
        """Return the stored entry with nonces normalized, or None.

        Raises:
            MalformedCiphertext: If a nonce field matches no known encoding.
        """
        fingerprint = self._check_fingerprint(fingerprint)
        record = await self._retrying("fetch", owner_id, fingerprint)
        if record is None:
            return None
        return EntryRecord(
            payload=bytes(record.payload),
            entry_nonce=normalize_nonce(record.entry_nonce, ENTRY_NONCE_SIZE),
            session_nonce=normalize_nonce(record.session_nonce, SESSION_NONCE_SIZE),
            created_at=int(record.created_at),
        )

    async def delete(self, owner_id: str, fingerprint: bytes) -> None:
        """Remove the entry; a missing entry is not an error."""
        fingerprint = self._check_fingerprint(fingerprint)
        try:
            await self._retrying("remove", owner_id, fingerprint)
        except EntryNotFound:
            pass
        logger.debug("Vault delete: owner=%s fp=%s", owner_id, _short(fingerprint))

    async def list_fingerprints(self, owner_id: str) -> list[bytes]:
        """All fingerprints stored for an owner."""
        return [bytes(fp) for fp in await self._retrying("list_fingerprints", owner_id)]
