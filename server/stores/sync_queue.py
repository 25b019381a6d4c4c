"""
Durable FIFO queue of game results awaiting a confirmed remote write.

Entries are persisted as one JSON list under `{prefix}:pending_sync` and
survive restarts. An entry leaves the queue only through remove(), which
callers invoke after the remote ledger confirmed the write.
"""

import asyncio
import json
import logging
from dataclasses import replace
from typing import Optional

from models.ledger import PendingSyncEntry
from stores.kv_store import KeyValueStore, PersistenceError

logger = logging.getLogger(__name__)


class PendingSyncQueue:
    """Ordered, persisted buffer of unconfirmed remote writes."""

    QUEUE_KEY = "{prefix}:pending_sync"

    def __init__(self, kv: KeyValueStore, key_prefix: str = "ag_sudoku"):
        """
        Initialize pending sync queue.

        Args:
            kv: On-device key-value store.
            key_prefix: Namespace for storage keys.
        """
        self.kv = kv
        self.key = self.QUEUE_KEY.format(prefix=key_prefix)
        self._lock = asyncio.Lock()
        self._entries: list[PendingSyncEntry] = []
        self._loaded = False
        self._persisted = True

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def persisted(self) -> bool:
        return self._persisted

    async def load(self) -> list[PendingSyncEntry]:
        """Load queued entries from storage (no-op once loaded)."""
        async with self._lock:
            await self._ensure_loaded()
            return list(self._entries)

    async def enqueue(self, entry: PendingSyncEntry) -> None:
        """Append an entry to the end of the queue and persist."""
        async with self._lock:
            await self._ensure_loaded()
            if any(e.entry_id == entry.entry_id for e in self._entries):
                return
            self._entries.append(entry)
            await self._persist()
        logger.info(
            f"Queued game result for later sync ({len(self._entries)} pending)",
            extra={"entry_id": entry.entry_id, "user_id": entry.user_id},
        )

    async def entries(self, user_id: Optional[str] = None) -> list[PendingSyncEntry]:
        """
        Snapshot of queued entries in FIFO order.

        Args:
            user_id: Only return entries recorded for this user.
        """
        async with self._lock:
            await self._ensure_loaded()
            return [e for e in self._entries if user_id is None or e.user_id == user_id]

    async def count(self, user_id: Optional[str] = None) -> int:
        return len(await self.entries(user_id))

    async def remove(self, entry_id: str) -> bool:
        """
        Remove a confirmed entry.

        Returns:
            True if the entry was queued.
        """
        async with self._lock:
            await self._ensure_loaded()
            before = len(self._entries)
            self._entries = [e for e in self._entries if e.entry_id != entry_id]
            if len(self._entries) == before:
                return False
            await self._persist()
            return True

    async def mark_attempt(self, entry_id: str) -> None:
        """Record a failed sync attempt for an entry."""
        async with self._lock:
            await self._ensure_loaded()
            self._entries = [
                replace(e, attempts=e.attempts + 1) if e.entry_id == entry_id else e
                for e in self._entries
            ]
            await self._persist()

    async def clear(self) -> None:
        """Drop every entry (explicit local data wipe only)."""
        async with self._lock:
            await self.kv.delete(self.key)
            self._entries = []
            self._loaded = True
            self._persisted = True

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            if not self._persisted:
                await self._persist()
            return

        try:
            raw = await self.kv.get(self.key)
        except PersistenceError as e:
            logger.error(f"Could not read pending sync queue, keeping in-memory entries: {e}")
            return

        stored: list[PendingSyncEntry] = []
        if raw:
            try:
                stored = [PendingSyncEntry.from_dict(item) for item in json.loads(raw)]
            except (ValueError, TypeError, KeyError) as e:
                logger.warning(f"Pending sync queue at {self.key} is corrupt, starting empty: {e}")

        known = {e.entry_id for e in stored}
        self._entries = stored + [e for e in self._entries if e.entry_id not in known]
        self._loaded = True
        if not self._persisted:
            await self._persist()

    async def _persist(self) -> None:
        if not self._loaded:
            self._persisted = False
            return

        try:
            if self._entries:
                await self.kv.set(self.key, json.dumps([e.to_dict() for e in self._entries]))
            else:
                await self.kv.delete(self.key)
            self._persisted = True
        except PersistenceError as e:
            self._persisted = False
            logger.error(f"Failed to persist pending sync queue: {e}", exc_info=True)
