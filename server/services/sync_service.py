"""
Flushes the pending sync queue into the remote ledger.

Entries are sent strictly in the order they were queued. The first
failure stops the flush so a later entry is never applied before an
earlier one; the failed entry stays at the head for the next attempt.
"""

from dataclasses import dataclass

from logging_config import get_logger
from services.sync_guard import SyncGuard, call_remote
from stores.remote_ledger import RemoteLedger, RemoteWriteError
from stores.sync_queue import PendingSyncQueue

logger = get_logger(__name__)


@dataclass
class FlushResult:
    """Result of a flush."""

    synced: int
    remaining: int
    skipped_in_flight: bool = False


class SyncService:
    """Applies queued game results to the remote ledger."""

    def __init__(
        self,
        queue: PendingSyncQueue,
        remote: RemoteLedger,
        guard: SyncGuard,
        remote_timeout: float = 10.0,
    ):
        """
        Initialize sync service.

        Args:
            queue: Pending sync queue.
            remote: Remote ledger.
            guard: Guard shared with migration.
            remote_timeout: Seconds before a remote call counts as failed.
        """
        self.queue = queue
        self.remote = remote
        self.guard = guard
        self.remote_timeout = remote_timeout

    async def flush_pending_sync(self, user_id: str) -> FlushResult:
        """
        Send a user's queued entries to the remote ledger.

        Entries queued for other users are left untouched.

        Args:
            user_id: Authenticated user id.

        Returns:
            FlushResult with synced and remaining counts.
        """
        if not user_id:
            return FlushResult(synced=0, remaining=await self.queue.count())

        log = logger.with_context(user_id=user_id)

        async with self.guard.held(user_id) as acquired:
            if not acquired:
                log.info("Sync already in flight, skipping flush")
                return FlushResult(
                    synced=0,
                    remaining=await self.queue.count(user_id),
                    skipped_in_flight=True,
                )

            entries = await self.queue.entries(user_id)
            if not entries:
                return FlushResult(synced=0, remaining=0)

            log.info(f"Flushing {len(entries)} pending sync items...")

            synced = 0
            for entry in entries:
                try:
                    await call_remote(
                        self.remote.merge_aggregate(user_id, entry.to_delta(), entry.idempotency_key),
                        self.remote_timeout,
                    )
                except RemoteWriteError as e:
                    await self.queue.mark_attempt(entry.entry_id)
                    log.warning(
                        f"Sync stopped at queued entry (attempt {entry.attempts + 1}): {e}",
                        extra={"entry_id": entry.entry_id},
                    )
                    break

                await self.queue.remove(entry.entry_id)
                synced += 1

            remaining = await self.queue.count(user_id)

        log.info(f"Synced {synced} items, {remaining} remaining")
        return FlushResult(synced=synced, remaining=remaining)
