"""
Vault Session — Session-scoped holder of the master secret.

The caller owns the session and passes it to every vault operation. ``clear()``
overwrites the key buffer before releasing it, so the master secret does not
linger until garbage collection.

Security Note (Threat Model):
    ``master_secret`` hands out immutable ``bytes`` copies for the crypto
    library, and those copies cannot be scrubbed. Only the session's own
    buffer is wiped on ``clear()``. This is an accepted limitation.
"""
import time
import logging
from typing import Optional

from .exceptions import SessionExpired
from .kdf import KeyMaterial, validate_master_secret

logger = logging.getLogger("safekey.vault")


class VaultSession:
    """Master secret plus owner identity for one authenticated session.

    Args:
        owner_id: Identity supplied to the store on every call.
        master_secret: KM as raw bytes or base64 text.
        max_age: Seconds before the session stops handing out KM;
            ``None`` disables expiry.
    """

    def __init__(
        self,
        owner_id: str,
        master_secret: KeyMaterial,
        max_age: Optional[int] = 86400,
    ):
        if not owner_id:
            raise ValueError("owner_id cannot be empty")
        self._owner_id = owner_id
        self._key = bytearray(validate_master_secret(master_secret))
        self._max_age = max_age
        self._created = time.time()
        self._cleared = False

    def __repr__(self) -> str:
        return (
            f"<VaultSession owner={self._owner_id} "
            f"valid={self.is_valid} cleared={self._cleared}>"
        )

    def __enter__(self) -> "VaultSession":
        return self

    def __exit__(self, *exc) -> None:
        self.clear()

    @property
    def owner_id(self) -> str:
        return self._owner_id

    @property
    def created(self) -> float:
        return self._created

    @property
    def max_age(self) -> Optional[int]:
        return self._max_age

    @property
    def cleared(self) -> bool:
        return self._cleared

    @property
    def expired(self) -> bool:
        if self._max_age is None:
            return False
        return (time.time() - self._created) >= self._max_age

    @property
    def is_valid(self) -> bool:
        return not self._cleared and not self.expired

    @property
    def master_secret(self) -> bytes:
        """Return KM.

        Raises:
            SessionExpired: If the session was cleared or is too old.
        """
        if self._cleared:
            raise SessionExpired("Vault session has been cleared")
        if self.expired:
            raise SessionExpired(
                f"Vault session for owner={self._owner_id} exceeded "
                f"max age of {self._max_age}s"
            )
        return bytes(self._key)

    def clear(self) -> None:
        """Overwrite and drop the master secret. Safe to call twice."""
        for i in range(len(self._key)):
            self._key[i] = 0
        self._key = bytearray()
        if not self._cleared:
            logger.debug("Vault session cleared: owner=%s", self._owner_id)
        self._cleared = True
