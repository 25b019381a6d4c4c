"""
Progression facade used by gameplay code.

Every finished game goes through record_game(): it is always counted in
the device ledger first, and then, for a signed-in user on a migrated
device, written to the remote ledger. Remote trouble never fails the
call; it only shows up as cloud_saved=False and a pending queue entry.

Recording order for a signed-in user:
1. local ledger write
2. queue entry written (survives a crash before the remote write)
3. remote merge keyed by the entry id
4. entry removed once the remote merge is confirmed

Until the device has migrated, games stay local only; the migration
carries them into the remote ledger together with the guest history.

Usage:
    progression = ProgressionService.create(kv, remote)
    await progression.on_identity_changed(user_id)
    outcome = await progression.record_game_result("expert", 300, 0, 0, True, user_id)
"""

from dataclasses import dataclass, field
from typing import Optional

from config import XPPolicy
from leveling import LevelInfo, calculate_xp, level_from_xp
from logging_config import get_logger
from models.game_result import Difficulty, GameResult
from models.ledger import LedgerAggregate, PendingSyncEntry, StreakStats
from services.migration_service import MigrationResult, MigrationService
from services.sync_guard import SyncGuard, call_remote
from services.sync_service import FlushResult, SyncService
from stores.kv_store import KeyValueStore
from stores.local_ledger import LocalLedger
from stores.remote_ledger import RemoteLedger, RemoteWriteError
from stores.sync_queue import PendingSyncQueue

logger = get_logger(__name__)


@dataclass
class RecordOutcome:
    """Result of recording one game."""
    xp_earned: int
    cloud_saved: bool
    aggregate: LedgerAggregate
    local_saved: bool = True


@dataclass
class GameEndResult:
    """What the gameplay UI shows after a game."""
    xp_earned: int
    cloud_saved: bool
    new_level: int
    leveled_up: bool
    local_saved: bool = True

    def to_dict(self) -> dict:
        return {
            "xp_earned": self.xp_earned,
            "cloud_saved": self.cloud_saved,
            "new_level": self.new_level,
            "leveled_up": self.leveled_up,
            "local_saved": self.local_saved,
        }


@dataclass
class SyncStatus:
    """Sync state for a non-blocking status indicator."""
    migrated: bool
    pending: int
    level: LevelInfo
    aggregate: LedgerAggregate
    streak: StreakStats = field(default_factory=StreakStats)
    migration: Optional[MigrationResult] = None
    flush: Optional[FlushResult] = None


class ProgressionService:
    """Single entry point for recording games and reading progression."""

    def __init__(
        self,
        ledger: LocalLedger,
        queue: PendingSyncQueue,
        remote: RemoteLedger,
        migration: MigrationService,
        sync: SyncService,
        policy: Optional[XPPolicy] = None,
        remote_timeout: float = 10.0,
    ):
        self.ledger = ledger
        self.queue = queue
        self.remote = remote
        self.migration = migration
        self.sync = sync
        self.policy = policy
        self.remote_timeout = remote_timeout

    @classmethod
    def create(
        cls,
        kv: KeyValueStore,
        remote: RemoteLedger,
        key_prefix: str = "ag_sudoku",
        policy: Optional[XPPolicy] = None,
        remote_timeout: float = 10.0,
    ) -> "ProgressionService":
        """
        Wire the ledger, queue, migration and sync services together.

        Args:
            kv: On-device key-value store.
            remote: Remote ledger.
            key_prefix: Namespace for storage keys.
            policy: XP amounts (defaults to the configured policy).
            remote_timeout: Seconds before a remote call counts as failed.
        """
        guard = SyncGuard()
        ledger = LocalLedger(kv, key_prefix)
        queue = PendingSyncQueue(kv, key_prefix)
        migration = MigrationService(kv, ledger, remote, guard, key_prefix, remote_timeout)
        sync = SyncService(queue, remote, guard, remote_timeout)
        return cls(ledger, queue, remote, migration, sync, policy, remote_timeout)

    # -------------------------------------------------------------------------
    # XP
    # -------------------------------------------------------------------------

    def get_xp_preview(self, result: GameResult) -> int:
        """XP a result would earn, without recording anything."""
        return calculate_xp(result, self.policy)

    def detect_level_up(self, previous_xp: int, xp_earned: int) -> tuple[LevelInfo, bool]:
        """
        Compare levels before and after an XP award.

        Returns:
            (level info for the new total, whether the level increased)
        """
        before = level_from_xp(previous_xp)
        after = level_from_xp(previous_xp + xp_earned)
        return after, after.level > before.level

    # -------------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------------

    async def record_game(self, result: GameResult, user_id: Optional[str] = None) -> RecordOutcome:
        """
        Record a finished game.

        Args:
            result: Validated game result.
            user_id: Signed-in user, or None for a guest.

        Returns:
            RecordOutcome; cloud_saved is True only after a confirmed remote write.

        Raises:
            InvariantViolation: If the result cannot earn a valid XP amount.
        """
        xp = calculate_xp(result, self.policy)

        if not await self.migration.is_migrated():
            async with self.migration.transition_lock:
                if not await self.migration.is_migrated():
                    aggregate = await self.ledger.record_local(result, xp)
                    return RecordOutcome(xp, False, aggregate, self.ledger.persisted)

        aggregate = await self.ledger.record_local(result, xp)
        local_saved = self.ledger.persisted
        if not user_id:
            return RecordOutcome(xp, False, aggregate, local_saved)

        entry = PendingSyncEntry(user_id=user_id, result=result, xp_awarded=xp)
        await self.queue.enqueue(entry)

        log = logger.with_context(user_id=user_id, entry_id=entry.entry_id)
        try:
            await call_remote(
                self.remote.merge_aggregate(user_id, entry.to_delta(), entry.idempotency_key),
                self.remote_timeout,
            )
        except RemoteWriteError as e:
            log.warning(f"Failed to save game to cloud, kept in queue: {e}")
            return RecordOutcome(xp, False, aggregate, local_saved)

        await self.queue.remove(entry.entry_id)
        log.info(f"Game result saved to cloud (+{xp} XP)")
        return RecordOutcome(xp, True, aggregate, local_saved)

    async def record_game_result(
        self,
        difficulty: Difficulty | str,
        time_seconds: int,
        mistakes: int,
        hints_used: int,
        is_win: bool,
        user_id: Optional[str] = None,
    ) -> GameEndResult:
        """
        Record a game from raw gameplay values and report level changes.

        is_perfect is derived (win with zero mistakes), never taken from the caller.
        """
        result = GameResult.create(difficulty, time_seconds, mistakes, hints_used, is_win)
        previous_xp = await self._current_xp(user_id)

        outcome = await self.record_game(result, user_id)
        new_level, leveled_up = self.detect_level_up(previous_xp, outcome.xp_earned)

        if leveled_up:
            logger.info(f"Level up! Now level {new_level.level} ({new_level.title})")

        return GameEndResult(
            xp_earned=outcome.xp_earned,
            cloud_saved=outcome.cloud_saved,
            new_level=new_level.level,
            leveled_up=leveled_up,
            local_saved=outcome.local_saved,
        )

    # -------------------------------------------------------------------------
    # Identity & sync
    # -------------------------------------------------------------------------

    async def on_identity_changed(self, user_id: Optional[str]) -> SyncStatus:
        """
        React to a user becoming available.

        Migrates the device once, then flushes the user's queued games.
        Signing out (user_id None) does nothing beyond reporting status.
        """
        if not user_id:
            return await self.status()

        migration = None
        if not await self.migration.is_migrated():
            migration = await self.migration.migrate(user_id)

        flush = None
        if await self.migration.is_migrated():
            flush = await self.sync.flush_pending_sync(user_id)

        status = await self.status(user_id)
        status.migration = migration
        status.flush = flush
        return status

    async def flush_pending_sync(self, user_id: str) -> FlushResult:
        return await self.sync.flush_pending_sync(user_id)

    async def status(self, user_id: Optional[str] = None) -> SyncStatus:
        """Current migration flag, queue size and device level."""
        aggregate = await self.ledger.load_local()
        pending = await self.queue.count(user_id) if user_id else len(await self.queue.load())
        return SyncStatus(
            migrated=await self.migration.is_migrated(),
            pending=pending,
            level=level_from_xp(aggregate.xp),
            aggregate=aggregate,
            streak=self.ledger.streak,
        )

    async def wipe_local_data(self) -> None:
        """Erase the device ledger, queue and migration flag."""
        async with self.migration.transition_lock:
            await self.ledger.wipe()
            await self.queue.clear()
            await self.migration.reset()
        logger.warning("Local progression data wiped")

    async def _current_xp(self, user_id: Optional[str]) -> int:
        if user_id and await self.migration.is_migrated():
            try:
                remote = await call_remote(self.remote.read_aggregate(user_id), self.remote_timeout)
                if remote is not None:
                    return remote.xp
            except RemoteWriteError as e:
                logger.warning(f"Could not read remote XP, using device total: {e}")
        return (await self.ledger.load_local()).xp
