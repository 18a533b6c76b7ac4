"""
PostgreSQL Vault Store — ``VaultStore`` over an asyncpg-compatible pool.

Table layout (one row per owner/fingerprint, created_at kept on replace):

    CREATE TABLE safekey.vault_entries (
        owner_id      TEXT        NOT NULL,
        fingerprint   BYTEA       NOT NULL,
        payload       BYTEA       NOT NULL,
        entry_nonce   BYTEA       NOT NULL,
        session_nonce BYTEA       NOT NULL,
        created_at    BIGINT      NOT NULL,
        updated_at    TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        PRIMARY KEY (owner_id, fingerprint)
    );

Security Note:
    Rows hold ciphertext only. Never log payloads or nonces.
"""
import time
import logging
from typing import Any

from asyncpg.exceptions import InterfaceError, PostgresConnectionError

from .exceptions import DuplicateKey, EntryNotFound, StoreUnavailable
from .store import EntryRecord

logger = logging.getLogger("safekey.vault")

# connection-level failures; constraint and SQL errors propagate unchanged
_UNAVAILABLE = (OSError, PostgresConnectionError, InterfaceError)

# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------

_EXISTS_ENTRY = """
SELECT EXISTS (
    SELECT 1 FROM safekey.vault_entries
    WHERE owner_id = $1 AND fingerprint = $2
)
"""

_CREATE_ENTRY = """
INSERT INTO safekey.vault_entries
    (owner_id, fingerprint, payload, entry_nonce, session_nonce, created_at)
VALUES ($1, $2, $3, $4, $5, $6)
ON CONFLICT (owner_id, fingerprint) DO NOTHING
RETURNING created_at
"""

_REPLACE_ENTRY = """
UPDATE safekey.vault_entries
SET payload = $3, entry_nonce = $4, session_nonce = $5, updated_at = NOW()
WHERE owner_id = $1 AND fingerprint = $2
"""

_SELECT_ENTRY = """
SELECT payload, entry_nonce, session_nonce, created_at
FROM safekey.vault_entries
WHERE owner_id = $1 AND fingerprint = $2
"""

_DELETE_ENTRY = """
DELETE FROM safekey.vault_entries
WHERE owner_id = $1 AND fingerprint = $2
"""

_SELECT_FINGERPRINTS = """
SELECT fingerprint
FROM safekey.vault_entries
WHERE owner_id = $1
ORDER BY created_at
"""

_INSERT_AUDIT = """
INSERT INTO safekey.vault_audit (owner_id, fingerprint, operation)
VALUES ($1, $2, $3)
"""


def _affected_rows(status: str) -> int:
    """Parse the row count out of an asyncpg status tag like ``UPDATE 1``."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (AttributeError, ValueError):
        return 0


class PgVaultStore:
    """Vault entries persisted in PostgreSQL.

    Each mutation and its audit row are written in one transaction.

    Args:
        db_pool: asyncpg-compatible connection pool.
        audit: Write a ``vault_audit`` row for every mutation.
    """

    def __init__(self, db_pool: Any, audit: bool = True):
        self._db = db_pool
        self._audit_enabled = audit

    async def _audit(self, conn: Any, owner_id: str, fingerprint: bytes, operation: str) -> None:
        """Insert an audit log entry."""
        if self._audit_enabled:
            await conn.execute(_INSERT_AUDIT, owner_id, fingerprint, operation)

    async def exists(self, owner_id: str, fingerprint: bytes) -> bool:
        try:
            async with self._db.acquire() as conn:
                return bool(await conn.fetchval(_EXISTS_ENTRY, owner_id, fingerprint))
        except _UNAVAILABLE as err:
            raise StoreUnavailable(f"exists failed: {err}") from err

    async def create(
        self,
        owner_id: str,
        fingerprint: bytes,
        payload: bytes,
        entry_nonce: bytes,
        session_nonce: bytes,
    ) -> None:
        created_at = int(time.time() * 1000)
        try:
            async with self._db.acquire() as conn:
                async with conn.transaction():
                    inserted = await conn.fetchval(
                        _CREATE_ENTRY,
                        owner_id, fingerprint, payload,
                        entry_nonce, session_nonce, created_at,
                    )
                    if inserted is None:
                        raise DuplicateKey("Entry already exists for fingerprint")
                    await self._audit(conn, owner_id, fingerprint, "create")
        except _UNAVAILABLE as err:
            raise StoreUnavailable(f"create failed: {err}") from err
        logger.debug("Vault create: owner=%s", owner_id)

    async def replace(
        self,
        owner_id: str,
        fingerprint: bytes,
        payload: bytes,
        entry_nonce: bytes,
        session_nonce: bytes,
    ) -> None:
        try:
            async with self._db.acquire() as conn:
                async with conn.transaction():
                    status = await conn.execute(
                        _REPLACE_ENTRY,
                        owner_id, fingerprint, payload, entry_nonce, session_nonce,
                    )
                    if _affected_rows(status) == 0:
                        raise EntryNotFound("No entry for fingerprint")
                    await self._audit(conn, owner_id, fingerprint, "replace")
        except _UNAVAILABLE as err:
            raise StoreUnavailable(f"replace failed: {err}") from err
        logger.debug("Vault replace: owner=%s", owner_id)

    async def fetch(self, owner_id: str, fingerprint: bytes) -> EntryRecord | None:
        try:
            async with self._db.acquire() as conn:
                row = await conn.fetchrow(_SELECT_ENTRY, owner_id, fingerprint)
        except _UNAVAILABLE as err:
            raise StoreUnavailable(f"fetch failed: {err}") from err
        if row is None:
            return None
        return EntryRecord(
            payload=bytes(row["payload"]),
            entry_nonce=bytes(row["entry_nonce"]),
            session_nonce=bytes(row["session_nonce"]),
            created_at=int(row["created_at"]),
        )

    async def remove(self, owner_id: str, fingerprint: bytes) -> None:
        try:
            async with self._db.acquire() as conn:
                async with conn.transaction():
                    status = await conn.execute(_DELETE_ENTRY, owner_id, fingerprint)
                    if _affected_rows(status):
                        await self._audit(conn, owner_id, fingerprint, "delete")
        except _UNAVAILABLE as err:
            raise StoreUnavailable(f"remove failed: {err}") from err
        logger.debug("Vault remove: owner=%s", owner_id)

    async def list_fingerprints(self, owner_id: str) -> list[bytes]:
        try:
            async with self._db.acquire() as conn:
                rows = await conn.fetch(_SELECT_FINGERPRINTS, owner_id)
        except _UNAVAILABLE as err:
            raise StoreUnavailable(f"list failed: {err}") from err
        return [bytes(row["fingerprint"]) for row in rows]
