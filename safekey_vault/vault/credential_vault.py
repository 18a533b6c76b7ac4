"""
CredentialVault — Per-domain credential storage encrypted under the master secret.

Provides the public API for the credential vault:
- ``save_credential(domain, username, password, km, owner_id)`` — encrypt and upsert
- ``load_credential(domain, km, owner_id)`` — fetch and decrypt, ``None`` if absent
- ``credential_exists(domain, km, owner_id)`` — read-only existence check
- ``delete_credential(domain, km, owner_id)`` — idempotent delete
- ``list_credentials(km, owner_id)`` — decrypt every entry of an owner

``km`` is the raw master secret, its base64 text, or a ``VaultSession``
(whose owner is used when ``owner_id`` is omitted).

Security Note:
    Never log plaintext, passwords or key material. Only log owner IDs,
    fingerprint prefixes and outcomes.
"""
import logging
from typing import Optional, Union

from pydantic import BaseModel, Field

from .config import VaultConfig
from .crypto import (
    decrypt,
    deserialize_payload,
    encrypt,
    join_wire,
    serialize_payload,
    split_wire,
)
from .exceptions import DecryptionFailed
from .kdf import (
    KeyMaterial,
    derive_session_key,
    domain_fingerprint,
    generate_session_nonce,
    normalize_domain,
    validate_master_secret,
)
from .lifecycle import EntryLifecycle, UpsertOutcome
from .session import VaultSession
from .store import EntryRecord, VaultStore

logger = logging.getLogger("safekey.vault")

MasterSecretLike = Union[KeyMaterial, VaultSession]


class Credential(BaseModel):
    """Decrypted credential for one domain."""

    domain: str = Field(min_length=1)
    username: str = Field(min_length=1)
    password: str = Field(min_length=1, repr=False)
    created_at: Optional[int] = None


class CredentialVault:
    """Encrypted credential vault over a ``VaultStore``.

    Each save derives a fresh session key from KM and a new 16-byte session
    nonce, so no two entries ever share key material even though KM is shared.
    """

    def __init__(self, store: VaultStore, config: Optional[VaultConfig] = None):
        self._config = config or VaultConfig()
        self._lifecycle = EntryLifecycle(store, self._config)

    @property
    def lifecycle(self) -> EntryLifecycle:
        return self._lifecycle

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _resolve(km: MasterSecretLike, owner_id: Optional[str]) -> tuple[bytes, str]:
        """Return validated ``(master_secret, owner_id)``."""
        if isinstance(km, VaultSession):
            owner = owner_id or km.owner_id
            key = km.master_secret
        else:
            owner = owner_id
            key = validate_master_secret(km)
        if not owner:
            raise ValueError("owner_id is required")
        return key, owner

    @staticmethod
    def _open(record: EntryRecord, key: bytes) -> Credential:
        """Re-derive the session key and decrypt one stored entry."""
        session_key = derive_session_key(key, record.session_nonce)
        plaintext = decrypt(join_wire(record.entry_nonce, record.payload), session_key)
        data = deserialize_payload(plaintext)
        return Credential(
            domain=data["domain"],
            username=data["username"],
            password=data["password"],
            created_at=record.created_at,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def save_credential(
        self,
        domain: str,
        username: str,
        password: str,
        km: MasterSecretLike,
        owner_id: Optional[str] = None,
    ) -> UpsertOutcome:
        """Encrypt and store a credential, replacing any previous one.

        Args:
            domain: Domain or URL; normalized before fingerprinting.
            username: Account name.
            password: Account password.
            km: Master secret or vault session.
            owner_id: Store identity (defaults to the session owner).

        Returns:
            The lifecycle transition applied to the entry.
        """
        key, owner = self._resolve(km, owner_id)
        credential = Credential(
            domain=normalize_domain(domain), username=username, password=password,
        )
        fingerprint = domain_fingerprint(credential.domain, key)

        session_nonce = generate_session_nonce()
        session_key = derive_session_key(key, session_nonce)
        wire = encrypt(
            serialize_payload(credential.domain, credential.username, credential.password),
            session_key,
        )
        entry_nonce, ciphertext = split_wire(wire)

        outcome = await self._lifecycle.upsert(
            owner, fingerprint, ciphertext, entry_nonce, session_nonce,
        )
        logger.info(
            "Vault save: owner=%s domain=%s outcome=%s",
            owner, credential.domain, outcome.value,
        )
        return outcome

    async def load_credential(
        self,
        domain: str,
        km: MasterSecretLike,
        owner_id: Optional[str] = None,
    ) -> Optional[Credential]:
        """Fetch and decrypt the credential for a domain.

        Returns:
            The credential, or ``None`` if none is stored.

        Raises:
            DecryptionFailed: If the entry exists but cannot be decrypted.
        """
        key, owner = self._resolve(km, owner_id)
        fingerprint = domain_fingerprint(domain, key)
        record = await self._lifecycle.fetch(owner, fingerprint)
        if record is None:
            logger.debug("Vault load: owner=%s no entry", owner)
            return None
        return self._open(record, key)

    async def credential_exists(
        self,
        domain: str,
        km: MasterSecretLike,
        owner_id: Optional[str] = None,
    ) -> bool:
        key, owner = self._resolve(km, owner_id)
        return await self._lifecycle.exists(owner, domain_fingerprint(domain, key))

    async def delete_credential(
        self,
        domain: str,
        km: MasterSecretLike,
        owner_id: Optional[str] = None,
    ) -> None:
        """Delete the credential for a domain. Missing entries are ignored."""
        key, owner = self._resolve(km, owner_id)
        await self._lifecycle.delete(owner, domain_fingerprint(domain, key))
        logger.info("Vault delete: owner=%s domain=%s", owner, normalize_domain(domain))

    async def list_credentials(
        self,
        km: MasterSecretLike,
        owner_id: Optional[str] = None,
    ) -> list[Credential]:
        """Decrypt every credential of an owner.

        Entries that cannot be decrypted are logged and skipped.
        """
        key, owner = self._resolve(km, owner_id)
        credentials: list[Credential] = []
        fingerprints = await self._lifecycle.list_fingerprints(owner)
        for fingerprint in fingerprints:
            try:
                record = await self._lifecycle.fetch(owner, fingerprint)
                if record is None:
                    continue
                credentials.append(self._open(record, key))
            except DecryptionFailed as err:
                logger.error(
                    "Failed to decrypt vault entry fp=%s for owner=%s: %s",
                    fingerprint.hex()[:8], owner, err,
                )
        logger.info(
            "Vault listed for owner=%s: %d of %d entr(ies)",
            owner, len(credentials), len(fingerprints),
        )
        return credentials
