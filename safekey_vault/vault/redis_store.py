"""
Redis Vault Store — ``VaultStore`` over an async Redis client.

Each entry is one string value holding an orjson document:
    safekey:{owner_id}:{fingerprint_hex} → {"payload", "entry_nonce",
                                           "session_nonce", "created_at"}
with byte fields base64-encoded. ``SET NX`` guards creation and ``SET XX``
guards replacement, so duplicate creates are rejected by Redis itself.
A per-owner set indexes the fingerprints for listing.
"""
import time
import base64
import logging
from typing import Any

import orjson
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from .exceptions import (
    DuplicateKey,
    EntryNotFound,
    MalformedCiphertext,
    StoreUnavailable,
)
from .store import EntryRecord

logger = logging.getLogger("safekey.vault")

_UNAVAILABLE = (OSError, RedisConnectionError, RedisTimeoutError)


def _encode_record(record: EntryRecord) -> bytes:
    return orjson.dumps({
        "payload": base64.b64encode(record.payload).decode("ascii"),
        "entry_nonce": base64.b64encode(record.entry_nonce).decode("ascii"),
        "session_nonce": base64.b64encode(record.session_nonce).decode("ascii"),
        "created_at": record.created_at,
    })


def _decode_record(data: bytes | str) -> EntryRecord:
    try:
        parsed = orjson.loads(data)
        return EntryRecord(
            payload=base64.b64decode(parsed["payload"], validate=True),
            entry_nonce=base64.b64decode(parsed["entry_nonce"], validate=True),
            session_nonce=base64.b64decode(parsed["session_nonce"], validate=True),
            created_at=int(parsed["created_at"]),
        )
    except (KeyError, TypeError, ValueError) as err:
        raise MalformedCiphertext("Stored vault record is corrupt") from err


class RedisVaultStore:
    """Vault entries persisted in Redis.

    Args:
        redis: ``redis.asyncio``-compatible client.
        prefix: Key namespace.
    """

    def __init__(self, redis: Any, prefix: str = "safekey"):
        self._redis = redis
        self._prefix = prefix

    # ------------------------------------------------------------------
    # Redis helpers
    # ------------------------------------------------------------------

    def _entry_key(self, owner_id: str, fingerprint: bytes) -> str:
        """Build Redis entry key."""
        return f"{self._prefix}:{owner_id}:{bytes(fingerprint).hex()}"

    def _index_key(self, owner_id: str) -> str:
        """Build Redis key of the owner's fingerprint index."""
        return f"{self._prefix}:{owner_id}:index"

    async def _call(self, operation: str, method: str, *args, **kwargs) -> Any:
        try:
            return await getattr(self._redis, method)(*args, **kwargs)
        except _UNAVAILABLE as err:
            raise StoreUnavailable(f"{operation} failed: {err}") from err

    # ------------------------------------------------------------------
    # VaultStore
    # ------------------------------------------------------------------

    async def exists(self, owner_id: str, fingerprint: bytes) -> bool:
        count = await self._call("exists", "exists", self._entry_key(owner_id, fingerprint))
        return bool(count)

    async def create(
        self,
        owner_id: str,
        fingerprint: bytes,
        payload: bytes,
        entry_nonce: bytes,
        session_nonce: bytes,
    ) -> None:
        record = EntryRecord(
            payload=bytes(payload),
            entry_nonce=bytes(entry_nonce),
            session_nonce=bytes(session_nonce),
            created_at=int(time.time() * 1000),
        )
        created = await self._call(
            "create", "set",
            self._entry_key(owner_id, fingerprint), _encode_record(record), nx=True,
        )
        if not created:
            raise DuplicateKey("Entry already exists for fingerprint")
        await self._call("create", "sadd", self._index_key(owner_id), bytes(fingerprint).hex())
        logger.debug("Vault create: owner=%s", owner_id)

    async def replace(
        self,
        owner_id: str,
        fingerprint: bytes,
        payload: bytes,
        entry_nonce: bytes,
        session_nonce: bytes,
    ) -> None:
        key = self._entry_key(owner_id, fingerprint)
        current = await self._call("replace", "get", key)
        if current is None:
            raise EntryNotFound("No entry for fingerprint")
        record = EntryRecord(
            payload=bytes(payload),
            entry_nonce=bytes(entry_nonce),
            session_nonce=bytes(session_nonce),
            created_at=_decode_record(current).created_at,
        )
        replaced = await self._call("replace", "set", key, _encode_record(record), xx=True)
        if not replaced:
            raise EntryNotFound("Entry removed during replace")
        logger.debug("Vault replace: owner=%s", owner_id)

    async def fetch(self, owner_id: str, fingerprint: bytes) -> EntryRecord | None:
        data = await self._call("fetch", "get", self._entry_key(owner_id, fingerprint))
        if data is None:
            return None
        return _decode_record(data)

    async def remove(self, owner_id: str, fingerprint: bytes) -> None:
        await self._call("remove", "delete", self._entry_key(owner_id, fingerprint))
        await self._call("remove", "srem", self._index_key(owner_id), bytes(fingerprint).hex())
        logger.debug("Vault remove: owner=%s", owner_id)

    async def list_fingerprints(self, owner_id: str) -> list[bytes]:
        members = await self._call("list", "smembers", self._index_key(owner_id))
        result = []
        for member in sorted(members or ()):
            if isinstance(member, bytes):
                member = member.decode("ascii")
            result.append(bytes.fromhex(member))
        return result
