"""
On-device ledger of recorded games.

The LocalLedger is the single owner of the device aggregate. It is the
source of truth while no user is signed in and a cache afterwards. Every
mutation runs under one asyncio.Lock and rewrites the whole stored
document through the key-value store, so a crash never exposes a partial
aggregate.

Storage failures never block gameplay: the in-memory aggregate stays
usable, the failure is logged, and the write is retried on the next call.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Optional

from models.game_result import GameResult
from models.ledger import LedgerAggregate, StreakStats
from stores.kv_store import KeyValueStore, PersistenceError

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 100


class LocalLedger:
    """Durable on-device aggregate plus recent game history."""

    LEDGER_KEY = "{prefix}:ledger"

    def __init__(
        self,
        kv: KeyValueStore,
        key_prefix: str = "ag_sudoku",
        history_limit: int = HISTORY_LIMIT,
    ):
        """
        Initialize local ledger.

        Args:
            kv: On-device key-value store.
            key_prefix: Namespace for storage keys.
            history_limit: Number of recent games kept in the history.
        """
        self.kv = kv
        self.key = self.LEDGER_KEY.format(prefix=key_prefix)
        self.history_limit = history_limit
        self._lock = asyncio.Lock()
        self._aggregate = LedgerAggregate()
        self._history: list[dict] = []
        self._streak = StreakStats()
        self._loaded = False
        self._persisted = True

    @property
    def aggregate(self) -> LedgerAggregate:
        """Current in-memory aggregate."""
        return self._aggregate

    @property
    def streak(self) -> StreakStats:
        """Daily win streak of this device (never synced)."""
        return self._streak

    @property
    def history(self) -> list[dict]:
        """Recent recorded games, oldest first."""
        return list(self._history)

    @property
    def persisted(self) -> bool:
        """False while the latest in-memory state has not reached storage."""
        return self._persisted

    async def load_local(self) -> LedgerAggregate:
        """
        Return the last committed aggregate.

        A missing or unreadable document yields a zero aggregate; a read
        failure is retried on the next call.
        """
        async with self._lock:
            await self._ensure_loaded()
            return self._aggregate

    async def record_local(self, result: GameResult, xp: int) -> LedgerAggregate:
        """
        Count a finished game and persist the new aggregate.

        Args:
            result: Validated game result.
            xp: XP awarded for the game.

        Returns:
            The updated aggregate (usable even if persisting failed).
        """
        now = datetime.now(timezone.utc)
        async with self._lock:
            await self._ensure_loaded()
            self._aggregate = self._aggregate.apply(result, xp, now)
            self._streak = self._streak.record(result.is_win, now.date())
            self._history.append({
                "result": result.to_dict(),
                "xp": xp,
                "recorded_at": now.isoformat(),
            })
            del self._history[:-self.history_limit]
            await self._persist()
            return self._aggregate

    async def wipe(self) -> None:
        """Erase the device ledger (explicit local data wipe only)."""
        async with self._lock:
            await self.kv.delete(self.key)
            self._aggregate = LedgerAggregate()
            self._history = []
            self._streak = StreakStats()
            self._loaded = True
            self._persisted = True
            logger.info("Local ledger wiped")

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            if not self._persisted:
                await self._persist()
            return

        try:
            raw = await self.kv.get(self.key)
        except PersistenceError as e:
            logger.error(f"Could not read local ledger, keeping in-memory state: {e}")
            return

        stored, history, streak = self._decode(raw)
        # Games counted while storage was unreadable are merged on top
        self._aggregate = stored.merge(self._aggregate)
        self._history = (history + self._history)[-self.history_limit:]
        self._streak = streak.combine(self._streak)
        self._loaded = True
        if not self._persisted:
            await self._persist()

    def _decode(self, raw: Optional[str]) -> tuple[LedgerAggregate, list[dict], StreakStats]:
        if raw is None:
            return LedgerAggregate(), [], StreakStats()
        try:
            payload = json.loads(raw)
            aggregate = LedgerAggregate.from_dict(payload.get("aggregate", {}))
            history = payload.get("history", [])
            if not isinstance(history, list):
                history = []
            streak = StreakStats.from_dict(payload.get("streak") or {})
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            logger.warning(f"Local ledger at {self.key} is corrupt, starting fresh: {e}")
            return LedgerAggregate(), [], StreakStats()
        return aggregate, history, streak

    async def _persist(self) -> None:
        if not self._loaded:
            # Never overwrite a stored ledger we could not read
            self._persisted = False
            return

        payload = {
            "aggregate": self._aggregate.to_dict(),
            "history": self._history,
            "streak": self._streak.to_dict(),
        }
        try:
            await self.kv.set(self.key, json.dumps(payload))
            self._persisted = True
        except PersistenceError as e:
            self._persisted = False
            logger.error(f"Failed to persist local ledger: {e}", exc_info=True)
