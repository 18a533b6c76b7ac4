"""
Key-Share Boundary — Master secret recovery from a threshold key-share service.

The external service hands out key shares for an identity when presented a
time-boxed identity proof. KM is reconstructed as
``SHA256(identity || canonical_share)``.

Under concurrent or retried calls the service may return several distinct
shares for one identity. The canonical share is always the lexicographically
smallest one, and the resulting KM is cached per identity so the choice is
made at most once per session. A different choice would make every entry
encrypted so far undecryptable.

Security Note:
    Never log shares or KM. Only identities and share counts.
"""
import time
import asyncio
import logging
from collections.abc import Iterable
from typing import Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from .config import VaultConfig
from .exceptions import KeyRecoveryError
from .kdf import derive_master_secret, validate_master_secret
from .session import VaultSession

logger = logging.getLogger("safekey.vault")


class IdentityProof(BaseModel):
    """Proof of identity presented to the key-share service."""

    identity: str = Field(min_length=1)
    token: str = Field(repr=False)
    expires_at: Optional[float] = None

    def expired(self, now: Optional[float] = None) -> bool:
        """True once the proof's authorization window has passed."""
        if self.expires_at is None:
            return False
        return (now if now is not None else time.time()) >= self.expires_at


@runtime_checkable
class KeyShareService(Protocol):
    """External threshold key-share service."""

    async def fetch_shares(self, proof: IdentityProof) -> Iterable[bytes]:
        """Return every share currently issued for ``proof.identity``."""
        ...

    async def provision_share(self, proof: IdentityProof) -> None:
        """Create the first share for an identity that has none."""
        ...


def pick_canonical(shares: Iterable[bytes]) -> bytes:
    """Select the canonical share: the lexicographically smallest bytes.

    Raises:
        KeyRecoveryError: If no non-empty share is given.
    """
    candidates = {bytes(share) for share in shares if share}
    if not candidates:
        raise KeyRecoveryError("No key shares available")
    return min(candidates)


class MasterSecretProvider:
    """Recovers KM once per identity and caches it for the session.

    Args:
        service: Key-share service collaborator.
        config: Vault configuration (recovery timeout, session max age).
    """

    def __init__(self, service: KeyShareService, config: Optional[VaultConfig] = None):
        self._service = service
        self._config = config or VaultConfig()
        self._cache: dict[str, bytearray] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def is_cached(self, identity: str) -> bool:
        return identity in self._cache

    async def get_master_secret(self, proof: IdentityProof) -> bytes:
        """Return KM for the proof's identity, recovering it at most once.

        Raises:
            KeyRecoveryError: If the proof expired, no share could be
                obtained, or recovery timed out.
        """
        cached = self._cache.get(proof.identity)
        if cached is not None:
            return bytes(cached)
        if proof.expired():
            raise KeyRecoveryError(
                f"Identity proof for {proof.identity} has expired"
            )
        lock = self._locks.setdefault(proof.identity, asyncio.Lock())
        async with lock:
            # another task may have finished recovery while we waited
            cached = self._cache.get(proof.identity)
            if cached is not None:
                return bytes(cached)
            try:
                km = await asyncio.wait_for(
                    self._recover(proof), timeout=self._config.recovery_timeout,
                )
            except asyncio.TimeoutError as err:
                raise KeyRecoveryError(
                    f"Key recovery for {proof.identity} timed out after "
                    f"{self._config.recovery_timeout}s"
                ) from err
            except (OSError, ConnectionError) as err:
                raise KeyRecoveryError(
                    f"Key-share service unavailable: {err}"
                ) from err
            self._cache[proof.identity] = bytearray(km)
        logger.info("Master secret recovered for identity=%s", proof.identity)
        return km

    async def _recover(self, proof: IdentityProof) -> bytes:
        shares = [bytes(s) for s in await self._service.fetch_shares(proof) if s]
        if not shares:
            logger.info(
                "No key share for identity=%s, provisioning one", proof.identity,
            )
            await self._service.provision_share(proof)
            shares = [bytes(s) for s in await self._service.fetch_shares(proof) if s]
        distinct = len(set(shares))
        if distinct > 1:
            logger.warning(
                "Key-share service returned %d distinct shares for identity=%s, "
                "using the canonical one",
                distinct, proof.identity,
            )
        share = pick_canonical(shares)
        return validate_master_secret(derive_master_secret(proof.identity, share))

    async def open_session(self, proof: IdentityProof) -> VaultSession:
        """Recover KM and wrap it in a ``VaultSession`` for the identity."""
        km = await self.get_master_secret(proof)
        return VaultSession(
            owner_id=proof.identity,
            master_secret=km,
            max_age=self._config.session_max_age,
        )

    def forget(self, identity: str) -> None:
        """Overwrite and drop the cached KM of one identity (logout)."""
        cached = self._cache.pop(identity, None)
        if cached is not None:
            for i in range(len(cached)):
                cached[i] = 0
            logger.debug("Master secret discarded for identity=%s", identity)
        lock = self._locks.get(identity)
        # a recovery in flight keeps its lock so new callers queue behind it
        if lock is not None and not lock.locked():
            del self._locks[identity]

    def clear(self) -> None:
        """Discard every cached master secret."""
        for identity in list(self._cache):
            self.forget(identity)
