"""
One-time migration of device stats into a user's remote ledger.

When a user signs in for the first time on a device, everything the
device recorded as a guest is added to the user's remote totals exactly
once. The remote record may already hold history from other devices;
local totals are added to it, never written over it.

States:
    NOT_MIGRATED -> MIGRATED (terminal; only a local data wipe resets it)

The flag flips only after the remote ledger confirmed the merge. The
merge uses the idempotency key `migration:{device_id}`, so a retry after
an unconfirmed (timed out) merge cannot count the device twice.

A local data wipe starts a new epoch: the flag and the device id are
both dropped, so the next migration claims a fresh key and the games
played after the wipe are merged like any other guest history.

Usage:
    migration = MigrationService(kv, ledger, remote, guard)
    if not await migration.is_migrated():
        await migration.migrate_local_stats_to_cloud(user_id)
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from logging_config import device_id_var
from models.ledger import LedgerAggregate
from services.sync_guard import SyncGuard, call_remote
from stores.kv_store import KeyValueStore, PersistenceError
from stores.local_ledger import LocalLedger
from stores.remote_ledger import RemoteLedger, RemoteWriteError

logger = logging.getLogger(__name__)


@dataclass
class MigrationResult:
    """
    Outcome of a migration attempt.

    Attributes:
        success: Device is migrated after this call.
        skipped: Device was already migrated; nothing was sent.
        in_progress: Another migration or flush for the user was running.
        conflict: Remote record already had history (resolved by merging).
        merged: The local totals that were added remotely, if any.
        already_applied: The remote ledger had already applied this epoch's merge.
        error: Failure description when success is False.
    """
    success: bool
    skipped: bool = False
    in_progress: bool = False
    conflict: bool = False
    merged: Optional[LedgerAggregate] = None
    already_applied: bool = False
    error: Optional[str] = None


class MigrationService:
    """Moves the guest-era device ledger into the remote ledger once."""

    MIGRATED_KEY = "{prefix}:migrated"
    DEVICE_KEY = "{prefix}:device_id"

    def __init__(
        self,
        kv: KeyValueStore,
        ledger: LocalLedger,
        remote: RemoteLedger,
        guard: SyncGuard,
        key_prefix: str = "ag_sudoku",
        remote_timeout: float = 10.0,
    ):
        """
        Initialize migration service.

        Args:
            kv: On-device key-value store holding the flag and device id.
            ledger: Device ledger to migrate.
            remote: Remote ledger receiving the merge.
            guard: Guard shared with queue flushes.
            key_prefix: Namespace for storage keys.
            remote_timeout: Seconds before a remote call counts as failed.
        """
        self.kv = kv
        self.ledger = ledger
        self.remote = remote
        self.guard = guard
        self.remote_timeout = remote_timeout
        self.migrated_key = self.MIGRATED_KEY.format(prefix=key_prefix)
        self.device_key = self.DEVICE_KEY.format(prefix=key_prefix)
        self._migrated = False
        self._device_id: Optional[str] = None
        # Held while the ledger is snapshotted and merged, and by gameplay
        # recording while the device is not yet migrated.
        self.transition_lock = asyncio.Lock()

    async def is_migrated(self) -> bool:
        """Read the migration flag. Unreadable storage counts as not migrated."""
        if self._migrated:
            return True
        try:
            return await self._read_flag()
        except PersistenceError as e:
            logger.error(f"Could not read migration flag: {e}")
            return False

    async def device_id(self) -> str:
        """Stable id of this device, created on first use."""
        if self._device_id:
            return self._device_id

        device_id = await self.kv.get(self.device_key)
        if not device_id:
            device_id = uuid.uuid4().hex
            await self.kv.set(self.device_key, device_id)
            logger.info(f"Registered new device {device_id[:8]}")
        self._device_id = device_id
        device_id_var.set(device_id)
        return device_id

    async def migrate_local_stats_to_cloud(self, user_id: str) -> bool:
        """
        Merge the device ledger into the user's remote ledger once.

        Returns:
            True if the device is migrated after this call.
        """
        return (await self.migrate(user_id)).success

    async def migrate(self, user_id: str) -> MigrationResult:
        """
        Run the migration and report the details.

        Args:
            user_id: Authenticated user id.

        Returns:
            MigrationResult describing what happened.
        """
        if not user_id:
            return MigrationResult(success=False, error="not_authenticated")

        async with self.guard.held(user_id) as acquired:
            if not acquired:
                logger.info(f"Sync already running for user {user_id}, skipping migration")
                return MigrationResult(success=False, in_progress=True)

            async with self.transition_lock:
                return await self._migrate_locked(user_id)

    async def reset(self) -> None:
        """Clear the flag and the device id (explicit local data wipe only)."""
        # A cleared flag must never pair with an already claimed device id
        await self.kv.delete(self.device_key)
        self._device_id = None
        device_id_var.set(None)
        await self.kv.delete(self.migrated_key)
        self._migrated = False
        logger.info("Migration flag and device id cleared")

    async def _migrate_locked(self, user_id: str) -> MigrationResult:
        try:
            if await self._read_flag():
                logger.info("Stats already migrated, skipping")
                return MigrationResult(success=True, skipped=True)
            device_id = await self.device_id()
        except PersistenceError as e:
            logger.error(f"Migration aborted, local storage unavailable: {e}")
            return MigrationResult(success=False, error="storage_unavailable")

        local = await self.ledger.load_local()
        if local.is_empty:
            await self._write_flag()
            logger.info("No local stats to migrate")
            return MigrationResult(success=True)

        logger.info(
            f"Starting stats migration ({local.games_played} games, {local.xp} XP)",
            extra={"user_id": user_id, "device_id": device_id},
        )

        conflict = False
        try:
            existing = await call_remote(self.remote.read_aggregate(user_id), self.remote_timeout)
            conflict = existing is not None and not existing.is_empty
        except RemoteWriteError as e:
            logger.warning(f"Could not read remote stats before migration: {e}")

        if conflict:
            logger.info(
                f"Remote stats already exist ({existing.games_played} games), adding device totals",
                extra={"user_id": user_id},
            )

        try:
            applied = await call_remote(
                self.remote.merge_aggregate(user_id, local, f"migration:{device_id}"),
                self.remote_timeout,
            )
        except RemoteWriteError as e:
            logger.warning(f"Migration failed, will retry later: {e}", extra={"user_id": user_id})
            return MigrationResult(success=False, conflict=conflict, error=str(e))

        if not applied:
            # Same device id means same epoch: an earlier unacknowledged attempt landed
            logger.info(
                f"Migration for device {device_id[:8]} was already applied remotely",
                extra={"user_id": user_id},
            )

        await self._write_flag()
        logger.info(f"Migration complete! Total games: {local.games_played}", extra={"user_id": user_id})
        return MigrationResult(
            success=True,
            conflict=conflict,
            merged=local,
            already_applied=not applied,
        )

    async def _read_flag(self) -> bool:
        if self._migrated:
            return True
        self._migrated = await self.kv.get(self.migrated_key) == "true"
        return self._migrated

    async def _write_flag(self) -> None:
        self._migrated = True
        try:
            await self.kv.set(self.migrated_key, "true")
        except PersistenceError as e:
            # A retried merge with the same device key is a no-op remotely
            logger.error(f"Failed to persist migration flag: {e}", exc_info=True)
