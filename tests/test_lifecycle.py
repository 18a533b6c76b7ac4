"""
Tests for the vault entry lifecycle.

Tests cover:
- Upsert transitions (created, replaced, conflict, vanished)
- Concurrent upserts for one fingerprint
- Read retries and write re-checks on transient failures
- Timeouts surfaced as StoreTimeout
- Idempotent delete and legacy nonce normalization on fetch
"""
import asyncio
import base64

import pytest

from safekey_vault.vault import EntryLifecycle, EntryRecord, UpsertOutcome, VaultConfig
from safekey_vault.vault.exceptions import (
    EntryNotFound,
    MalformedCiphertext,
    StoreTimeout,
    StoreUnavailable,
)

from .conftest import FlakyStore, SlowExistsStore, SlowStore, StaleExistsStore

OWNER = "0xowner1"
FP = bytes(range(32))
PAYLOAD = b"c" * 40
ENTRY_NONCE = b"e" * 12
SESSION_NONCE = b"s" * 16


@pytest.fixture
def lifecycle(store, config):
    return EntryLifecycle(store, config)


class TestUpsertTransitions:
    """Tests for the explicit check-then-branch transitions."""

    @pytest.mark.asyncio
    async def test_create_then_replace(self, lifecycle, store):
        first = await lifecycle.upsert(OWNER, FP, PAYLOAD, ENTRY_NONCE, SESSION_NONCE)
        second = await lifecycle.upsert(OWNER, FP, b"d" * 40, ENTRY_NONCE, SESSION_NONCE)
        assert first is UpsertOutcome.CREATED
        assert second is UpsertOutcome.REPLACED
        assert len(store) == 1
        record = await lifecycle.fetch(OWNER, FP)
        assert record.payload == b"d" * 40

    @pytest.mark.asyncio
    async def test_replace_preserves_created_at(self, lifecycle):
        await lifecycle.upsert(OWNER, FP, PAYLOAD, ENTRY_NONCE, SESSION_NONCE)
        created = (await lifecycle.fetch(OWNER, FP)).created_at
        await asyncio.sleep(0.01)
        await lifecycle.upsert(OWNER, FP, b"d" * 40, ENTRY_NONCE, SESSION_NONCE)
        assert (await lifecycle.fetch(OWNER, FP)).created_at == created

    @pytest.mark.asyncio
    async def test_duplicate_create_becomes_replace(self, config):
        """exists() missed a concurrent create; DuplicateKey turns into replace."""
        store = StaleExistsStore(stale_answer=False)
        lifecycle = EntryLifecycle(store, config)
        await store.create(OWNER, FP, PAYLOAD, ENTRY_NONCE, SESSION_NONCE)
        outcome = await lifecycle.upsert(OWNER, FP, b"new" * 10, ENTRY_NONCE, SESSION_NONCE)
        assert outcome is UpsertOutcome.CONFLICT_REPLACED
        assert (await store.fetch(OWNER, FP)).payload == b"new" * 10
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_vanished_entry_is_created(self, config):
        """exists() saw an entry that a concurrent delete removed."""
        store = StaleExistsStore(stale_answer=True)
        lifecycle = EntryLifecycle(store, config)
        outcome = await lifecycle.upsert(OWNER, FP, PAYLOAD, ENTRY_NONCE, SESSION_NONCE)
        assert outcome is UpsertOutcome.VANISHED_CREATED
        assert (await store.fetch(OWNER, FP)).payload == PAYLOAD

    @pytest.mark.asyncio
    async def test_concurrent_upserts_leave_one_entry(self, config):
        store = SlowExistsStore()
        lifecycle = EntryLifecycle(store, config)
        outcomes = await asyncio.gather(
            lifecycle.upsert(OWNER, FP, b"a" * 20, ENTRY_NONCE, SESSION_NONCE),
            lifecycle.upsert(OWNER, FP, b"b" * 20, ENTRY_NONCE, SESSION_NONCE),
        )
        assert set(outcomes) == {UpsertOutcome.CREATED, UpsertOutcome.CONFLICT_REPLACED}
        assert len(store) == 1
        assert (await store.fetch(OWNER, FP)).payload == b"b" * 20

    @pytest.mark.asyncio
    async def test_owners_are_isolated(self, lifecycle, store):
        await lifecycle.upsert(OWNER, FP, PAYLOAD, ENTRY_NONCE, SESSION_NONCE)
        await lifecycle.upsert("0xowner2", FP, PAYLOAD, ENTRY_NONCE, SESSION_NONCE)
        assert len(store) == 2
        assert await lifecycle.exists("0xowner3", FP) is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kwargs", [
        {"fingerprint": b"short"},
        {"entry_nonce": b"e" * 16},
        {"session_nonce": b"s" * 24},
    ])
    async def test_rejects_bad_field_lengths(self, lifecycle, store, kwargs):
        args = {
            "owner_id": OWNER,
            "fingerprint": FP,
            "payload": PAYLOAD,
            "entry_nonce": ENTRY_NONCE,
            "session_nonce": SESSION_NONCE,
        }
        args.update(kwargs)
        with pytest.raises(ValueError):
            await lifecycle.upsert(**args)
        assert len(store) == 0


class TestTransientFailures:
    """Tests for retries and timeouts."""

    @pytest.mark.asyncio
    async def test_fetch_retries_until_available(self, config):
        store = FlakyStore(failures=2, methods=("fetch",))
        lifecycle = EntryLifecycle(store, config)
        assert await lifecycle.fetch(OWNER, FP) is None
        assert store.calls["fetch"] == 3

    @pytest.mark.asyncio
    async def test_fetch_gives_up_after_max_retries(self, config):
        store = FlakyStore(failures=10, methods=("fetch",))
        lifecycle = EntryLifecycle(store, config)
        with pytest.raises(StoreUnavailable):
            await lifecycle.fetch(OWNER, FP)
        assert store.calls["fetch"] == config.max_retries + 1

    @pytest.mark.asyncio
    async def test_write_failure_rechecks_exists(self, config):
        """A failed create is retried only after a fresh exists check."""
        store = FlakyStore(failures=1, methods=("create",))
        lifecycle = EntryLifecycle(store, config)
        outcome = await lifecycle.upsert(OWNER, FP, PAYLOAD, ENTRY_NONCE, SESSION_NONCE)
        assert outcome is UpsertOutcome.CREATED
        assert store.calls["exists"] == 2
        assert store.calls["create"] == 2

    @pytest.mark.asyncio
    async def test_write_gives_up_after_max_retries(self, config):
        store = FlakyStore(failures=10, methods=("create",))
        lifecycle = EntryLifecycle(store, config)
        with pytest.raises(StoreUnavailable):
            await lifecycle.upsert(OWNER, FP, PAYLOAD, ENTRY_NONCE, SESSION_NONCE)
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_write_outage_bounded_by_max_retries(self):
        """Each upsert attempt checks exists once; there is no nested retry."""
        config = VaultConfig(store_timeout=0.5, retry_backoff=0.0, max_retries=3)
        store = FlakyStore(failures=100, methods=("exists",))
        lifecycle = EntryLifecycle(store, config)
        with pytest.raises(StoreUnavailable):
            await lifecycle.upsert(OWNER, FP, PAYLOAD, ENTRY_NONCE, SESSION_NONCE)
        assert store.calls["exists"] == config.max_retries + 1

    @pytest.mark.asyncio
    async def test_timeout_is_distinct_error(self):
        config = VaultConfig(store_timeout=0.05, retry_backoff=0.0, max_retries=0)
        lifecycle = EntryLifecycle(SlowStore(), config)
        with pytest.raises(StoreTimeout):
            await lifecycle.fetch(OWNER, FP)

    @pytest.mark.asyncio
    async def test_persistent_conflict_surfaces(self, config):
        """A store that keeps rejecting both writes eventually fails."""

        class ConflictStore(StaleExistsStore):
            async def replace(self, *args):
                raise EntryNotFound("gone")

        store = ConflictStore(stale_answer=False, times=100)
        await store.create(OWNER, FP, PAYLOAD, ENTRY_NONCE, SESSION_NONCE)
        lifecycle = EntryLifecycle(store, config)
        with pytest.raises(EntryNotFound):
            await lifecycle.upsert(OWNER, FP, PAYLOAD, ENTRY_NONCE, SESSION_NONCE)


class TestFetchAndDelete:
    """Tests for fetch normalization and idempotent delete."""

    @pytest.mark.asyncio
    async def test_fetch_missing(self, lifecycle):
        assert await lifecycle.fetch(OWNER, FP) is None

    @pytest.mark.asyncio
    async def test_fetch_normalizes_legacy_nonces(self, lifecycle, store):
        store.raw_put(OWNER, FP, EntryRecord(
            payload=PAYLOAD,
            entry_nonce=base64.b64encode(ENTRY_NONCE),
            session_nonce=base64.b64encode(SESSION_NONCE),
            created_at=1700000000000,
        ))
        record = await lifecycle.fetch(OWNER, FP)
        assert record.entry_nonce == ENTRY_NONCE
        assert record.session_nonce == SESSION_NONCE
        assert record.created_at == 1700000000000

    @pytest.mark.asyncio
    async def test_fetch_rejects_unknown_nonce_format(self, lifecycle, store):
        store.raw_put(OWNER, FP, EntryRecord(
            payload=PAYLOAD, entry_nonce=b"x" * 7,
            session_nonce=SESSION_NONCE, created_at=0,
        ))
        with pytest.raises(MalformedCiphertext):
            await lifecycle.fetch(OWNER, FP)

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, lifecycle, store):
        await lifecycle.delete(OWNER, FP)
        await lifecycle.upsert(OWNER, FP, PAYLOAD, ENTRY_NONCE, SESSION_NONCE)
        await lifecycle.delete(OWNER, FP)
        await lifecycle.delete(OWNER, FP)
        assert await lifecycle.exists(OWNER, FP) is False
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_delete_retries(self, config):
        store = FlakyStore(failures=1, methods=("remove",))
        lifecycle = EntryLifecycle(store, config)
        await lifecycle.delete(OWNER, FP)
        assert store.calls["remove"] == 2

    @pytest.mark.asyncio
    async def test_list_fingerprints(self, lifecycle):
        other = bytes(reversed(range(32)))
        await lifecycle.upsert(OWNER, FP, PAYLOAD, ENTRY_NONCE, SESSION_NONCE)
        await lifecycle.upsert(OWNER, other, PAYLOAD, ENTRY_NONCE, SESSION_NONCE)
        assert sorted(await lifecycle.list_fingerprints(OWNER)) == sorted([FP, other])
        assert await lifecycle.list_fingerprints("0xnobody") == []
