"""Services package for progression and sync business logic."""

from .sync_guard import SyncGuard, call_remote
from .migration_service import MigrationService, MigrationResult
from .sync_service import SyncService, FlushResult
from .progression_service import (
    ProgressionService,
    RecordOutcome,
    GameEndResult,
    SyncStatus,
)

__all__ = [
    "SyncGuard",
    "call_remote",
    "MigrationService",
    "MigrationResult",
    "SyncService",
    "FlushResult",
    "ProgressionService",
    "RecordOutcome",
    "GameEndResult",
    "SyncStatus",
]
