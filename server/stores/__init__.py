"""Stores package for on-device and remote stats persistence."""

from .kv_store import (
    KeyValueStore,
    FileKeyValueStore,
    SqliteKeyValueStore,
    PersistenceError,
    create_kv_store,
)
from .local_ledger import LocalLedger
from .sync_queue import PendingSyncQueue
from .remote_ledger import (
    RemoteLedger,
    PostgresRemoteLedger,
    UnavailableRemoteLedger,
    RemoteWriteError,
    get_remote_ledger,
    close_remote_ledger,
)

__all__ = [
    # On-device storage
    "KeyValueStore",
    "FileKeyValueStore",
    "SqliteKeyValueStore",
    "PersistenceError",
    "create_kv_store",
    # Local ledger
    "LocalLedger",
    # Pending sync queue
    "PendingSyncQueue",
    # Remote ledger
    "RemoteLedger",
    "PostgresRemoteLedger",
    "UnavailableRemoteLedger",
    "RemoteWriteError",
    "get_remote_ledger",
    "close_remote_ledger",
]
