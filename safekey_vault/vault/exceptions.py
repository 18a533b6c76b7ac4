"""
Vault Exceptions — Error taxonomy for the credential vault.

Security Note:
    Exception messages must never carry key bytes, plaintext or passwords.
    Only lengths, operation names and owner IDs are allowed.
"""


class VaultError(Exception):
    """Base class for every error raised by the vault."""


class KeyMaterialError(VaultError):
    """Master secret or derived key has the wrong shape.

    Fatal: the operation must abort, a truncated or padded key would
    produce fingerprints and session keys that never match again.
    """


class DecryptionFailed(VaultError):
    """Entry cannot be decrypted (wrong key, corrupted or unknown format)."""


class MalformedCiphertext(DecryptionFailed):
    """Wire format rejected by the integrity pre-checks, before the cipher runs."""


class KeyRecoveryError(VaultError):
    """Key-recovery boundary could not produce a master secret."""


class StoreError(VaultError):
    """Base class for remote object store failures."""


class StoreUnavailable(StoreError):
    """Transient store failure; reads may be retried with backoff."""


class StoreTimeout(StoreUnavailable):
    """Store call exceeded the configured timeout."""


class DuplicateKey(StoreError):
    """``create`` rejected because an entry already exists for the fingerprint."""


class EntryNotFound(StoreError):
    """``replace`` rejected because no entry exists for the fingerprint."""


class SessionExpired(VaultError):
    """Vault session was cleared or outlived its max age."""
