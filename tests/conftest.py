"""
Shared fixtures and in-memory fakes for the vault test-suite.
"""
import asyncio
from contextlib import asynccontextmanager

import pytest

from safekey_vault.vault import CredentialVault, MemoryVaultStore, VaultConfig
from safekey_vault.vault import pg_store
from safekey_vault.vault.exceptions import StoreUnavailable

KM = bytes([0x01]) * 32
OTHER_KM = bytes([0x02]) * 32


# --- Stores ---

class FlakyStore(MemoryVaultStore):
    """Fails the first ``failures`` calls of each listed method."""

    def __init__(self, failures: int = 1, methods=("fetch",)):
        super().__init__()
        self.remaining = {name: failures for name in methods}
        self.calls: dict[str, int] = {}

    def _maybe_fail(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1
        if self.remaining.get(name, 0) > 0:
            self.remaining[name] -= 1
            raise StoreUnavailable(f"{name} temporarily down")

    async def exists(self, owner_id, fingerprint):
        self._maybe_fail("exists")
        return await super().exists(owner_id, fingerprint)

    async def create(self, *args):
        self._maybe_fail("create")
        return await super().create(*args)

    async def replace(self, *args):
        self._maybe_fail("replace")
        return await super().replace(*args)

    async def fetch(self, owner_id, fingerprint):
        self._maybe_fail("fetch")
        return await super().fetch(owner_id, fingerprint)

    async def remove(self, owner_id, fingerprint):
        self._maybe_fail("remove")
        return await super().remove(owner_id, fingerprint)


class SlowStore(MemoryVaultStore):
    """Every fetch hangs longer than any test timeout."""

    async def fetch(self, owner_id, fingerprint):
        await asyncio.sleep(10)
        return await super().fetch(owner_id, fingerprint)


class StaleExistsStore(MemoryVaultStore):
    """``exists`` answers with a stale value, like a lagging read replica."""

    def __init__(self, stale_answer: bool, times: int = 1):
        super().__init__()
        self.stale_answer = stale_answer
        self.times = times

    async def exists(self, owner_id, fingerprint):
        if self.times > 0:
            self.times -= 1
            return self.stale_answer
        return await super().exists(owner_id, fingerprint)


class SlowExistsStore(MemoryVaultStore):
    """``exists`` yields after reading, so concurrent writers both see it."""

    async def exists(self, owner_id, fingerprint):
        result = await super().exists(owner_id, fingerprint)
        await asyncio.sleep(0.01)
        return result


# --- Redis / PostgreSQL fakes ---

class FakeRedis:
    """Subset of the ``redis.asyncio`` client used by ``RedisVaultStore``."""

    def __init__(self):
        self.data: dict[str, bytes] = {}
        self.sets: dict[str, set] = {}

    async def set(self, key, value, nx=False, xx=False):
        if nx and key in self.data:
            return None
        if xx and key not in self.data:
            return None
        self.data[key] = value
        return True

    async def get(self, key):
        return self.data.get(key)

    async def exists(self, key):
        return int(key in self.data)

    async def delete(self, key):
        return int(self.data.pop(key, None) is not None)

    async def sadd(self, key, member):
        members = self.sets.setdefault(key, set())
        added = member not in members
        members.add(member)
        return int(added)

    async def srem(self, key, member):
        members = self.sets.get(key, set())
        if member in members:
            members.discard(member)
            return 1
        return 0

    async def smembers(self, key):
        return {m.encode("ascii") for m in self.sets.get(key, set())}


class FakeConnection:
    """asyncpg-like connection answering the ``PgVaultStore`` statements."""

    def __init__(self):
        self.rows: dict[tuple, dict] = {}
        self.audit: list[tuple] = []
        self.audit_error: Exception | None = None
        self.rollbacks = 0

    @asynccontextmanager
    async def transaction(self):
        snapshot = {key: dict(row) for key, row in self.rows.items()}
        audit_len = len(self.audit)
        try:
            yield
        except BaseException:
            self.rows = snapshot
            del self.audit[audit_len:]
            self.rollbacks += 1
            raise

    async def fetchval(self, sql, *args):
        key = (args[0], bytes(args[1]))
        if sql == pg_store._EXISTS_ENTRY:
            return key in self.rows
        if sql == pg_store._CREATE_ENTRY:
            if key in self.rows:
                return None
            self.rows[key] = {
                "fingerprint": args[1],
                "payload": args[2],
                "entry_nonce": args[3],
                "session_nonce": args[4],
                "created_at": args[5],
            }
            return args[5]
        raise AssertionError(f"unexpected fetchval: {sql}")

    async def execute(self, sql, *args):
        if sql == pg_store._INSERT_AUDIT:
            if self.audit_error is not None:
                raise self.audit_error
            self.audit.append(args)
            return "INSERT 0 1"
        key = (args[0], bytes(args[1]))
        if sql == pg_store._REPLACE_ENTRY:
            if key not in self.rows:
                return "UPDATE 0"
            self.rows[key].update(
                payload=args[2], entry_nonce=args[3], session_nonce=args[4],
            )
            return "UPDATE 1"
        if sql == pg_store._DELETE_ENTRY:
            return f"DELETE {1 if self.rows.pop(key, None) else 0}"
        raise AssertionError(f"unexpected execute: {sql}")

    async def fetchrow(self, sql, *args):
        assert sql == pg_store._SELECT_ENTRY
        return self.rows.get((args[0], bytes(args[1])))

    async def fetch(self, sql, *args):
        assert sql == pg_store._SELECT_FINGERPRINTS
        return [row for (owner, _), row in self.rows.items() if owner == args[0]]


class FakePool:
    def __init__(self):
        self.conn = FakeConnection()

    @asynccontextmanager
    async def acquire(self):
        yield self.conn


# --- Fixtures ---

@pytest.fixture
def km():
    return KM


@pytest.fixture
def config():
    """Fast configuration: no backoff, short timeouts."""
    return VaultConfig(store_timeout=0.5, retry_backoff=0.0, max_retries=2)


@pytest.fixture
def store():
    return MemoryVaultStore()


@pytest.fixture
def vault(store, config):
    return CredentialVault(store, config)
