"""
Save Queue — Credential saves waiting for an unlocked vault session.

Capture happens before the master secret is available (e.g. a form submit
seen while the vault is locked). Queued items are drained through
``CredentialVault.save_credential`` once a session exists, and dropped after
``max_age`` seconds.
"""
import time
import uuid
import logging
from dataclasses import dataclass, field
from typing import Optional

from .exceptions import KeyMaterialError, SessionExpired, VaultError

logger = logging.getLogger("safekey.vault")


@dataclass
class QueuedSave:
    """One pending credential save."""

    domain: str
    username: str
    password: str = field(repr=False)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: float = field(default_factory=time.time)


class SaveQueue:
    """In-memory FIFO of pending credential saves."""

    def __init__(self, max_age: int = 3600):
        self._items: list[QueuedSave] = []
        self._max_age = max_age

    def __len__(self) -> int:
        return len(self._items)

    def enqueue(self, domain: str, username: str, password: str) -> str:
        """Queue a save request and return its id."""
        item = QueuedSave(domain=domain, username=username, password=password)
        self._items.append(item)
        logger.debug("Save queued: id=%s", item.id)
        return item.id

    def pending(self) -> list[QueuedSave]:
        """Snapshot of queued saves, oldest first."""
        return list(self._items)

    def remove(self, item_id: str) -> bool:
        """Drop a queued save. Returns False if it was not queued."""
        for index, item in enumerate(self._items):
            if item.id == item_id:
                del self._items[index]
                logger.debug("Save removed from queue: id=%s", item_id)
                return True
        return False

    def purge_expired(self, now: Optional[float] = None) -> int:
        """Drop saves older than ``max_age``; return how many were dropped."""
        cutoff = (now if now is not None else time.time()) - self._max_age
        before = len(self._items)
        self._items = [item for item in self._items if item.created_at >= cutoff]
        removed = before - len(self._items)
        if removed:
            logger.info("Save queue: cleared %d expired item(s)", removed)
        return removed

    async def drain(self, vault, km, owner_id: Optional[str] = None) -> dict:
        """Save every queued credential through ``vault``.

        Successful saves leave the queue; failed ones stay for the next
        drain. Key-material and session errors abort the drain.

        Returns:
            Stats dict with keys: total, saved, errors, expired.
        """
        stats = {"total": 0, "saved": 0, "errors": 0, "expired": self.purge_expired()}
        for item in self.pending():
            stats["total"] += 1
            try:
                await vault.save_credential(
                    item.domain, item.username, item.password, km, owner_id,
                )
            except (KeyMaterialError, SessionExpired):
                raise
            except (VaultError, ValueError) as err:
                logger.error("Queued save id=%s failed: %s", item.id, err)
                stats["errors"] += 1
                continue
            self.remove(item.id)
            stats["saved"] += 1
        logger.info("Save queue drained: %s", stats)
        return stats
