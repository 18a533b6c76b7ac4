"""Credential Vault — Per-domain credentials encrypted under one master secret.

Security Note (Threat Model):
    The master secret lives in process memory for the session lifetime and
    is wiped from the session buffer on logout. Copies handed to the crypto
    library cannot be scrubbed; a memory dump taken during a session can
    expose KM. Mitigating that requires a secure enclave, which is out of
    scope.

Store backends needing a client library live in their own modules and are
imported from there: ``safekey_vault.vault.pg_store.PgVaultStore`` (asyncpg,
``postgres`` extra) and ``safekey_vault.vault.redis_store.RedisVaultStore``
(redis, ``redis`` extra).
"""

from .credential_vault import CredentialVault, Credential
from .lifecycle import EntryLifecycle, UpsertOutcome
from .keyshare import IdentityProof, MasterSecretProvider, pick_canonical
from .session import VaultSession
from .store import EntryRecord, MemoryVaultStore, VaultStore
from .save_queue import SaveQueue
from .legacy import normalize_nonce
from .config import VaultConfig, load_master_secret, generate_master_secret
from .exceptions import (
    VaultError,
    KeyMaterialError,
    DecryptionFailed,
    MalformedCiphertext,
    KeyRecoveryError,
    SessionExpired,
    StoreError,
    StoreUnavailable,
    StoreTimeout,
    DuplicateKey,
    EntryNotFound,
)

__all__ = [
    "CredentialVault",
    "Credential",
    "EntryLifecycle",
    "UpsertOutcome",
    "IdentityProof",
    "MasterSecretProvider",
    "pick_canonical",
    "VaultSession",
    "EntryRecord",
    "MemoryVaultStore",
    "VaultStore",
    "SaveQueue",
    "normalize_nonce",
    "VaultConfig",
    "load_master_secret",
    "generate_master_secret",
    "VaultError",
    "KeyMaterialError",
    "DecryptionFailed",
    "MalformedCiphertext",
    "KeyRecoveryError",
    "SessionExpired",
    "StoreError",
    "StoreUnavailable",
    "StoreTimeout",
    "DuplicateKey",
    "EntryNotFound",
]
