"""
On-device key-value storage for the progression engine.

The local ledger, migration flag, device id and pending sync queue each
live under their own namespaced key. Every write replaces a key's whole
value atomically: a crash mid-write leaves the previous value intact.

Backends:
- FileKeyValueStore: one JSON/text file per key, written to a temporary
  file, fsynced, then swapped into place with os.replace().
- SqliteKeyValueStore: a single `kv` table, one transaction per write.

Key patterns:
- {prefix}:ledger        -> JSON (aggregate + recent history)
- {prefix}:migrated      -> "true" once migration succeeded
- {prefix}:pending_sync  -> JSON list of pending entries
- {prefix}:device_id     -> hex uuid of this device
"""

import logging
import os
import re
import sqlite3
import tempfile
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Raised when on-device storage cannot be read or written."""
    pass


class KeyValueStore:
    """Base interface for on-device storage."""

    async def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None if the key is absent."""
        raise NotImplementedError

    async def set(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one atomically."""
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        """Remove a key. Missing keys are ignored."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release any held resources."""
        return None


class FileKeyValueStore(KeyValueStore):
    """Directory-backed store, one file per key."""

    def __init__(self, directory: str | Path):
        """
        Initialize file store.

        Args:
            directory: Directory holding one file per key (created if missing).
        """
        self.directory = Path(directory).expanduser()
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9_.-]", "_", key)
        return self.directory / f"{safe}.json"

    async def get(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(f"Could not read {path}: {e}") from e

    async def set(self, key: str, value: str) -> None:
        path = self._path_for(key)
        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{path.stem}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except OSError as e:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise PersistenceError(f"Could not write {path}: {e}") from e

    async def delete(self, key: str) -> None:
        path = self._path_for(key)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise PersistenceError(f"Could not delete {path}: {e}") from e


class SqliteKeyValueStore(KeyValueStore):
    """SQLite-backed store, one row per key."""

    def __init__(self, db_path: str | Path):
        """
        Initialize SQLite store.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

    async def get(self, key: str) -> Optional[str]:
        try:
            with sqlite3.connect(self.db_path) as conn:
                row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not read {key}: {e}") from e
        return row[0] if row else None

    async def set(self, key: str, value: str) -> None:
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.execute(
                    """
                    INSERT INTO kv (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP
                    """,
                    (key, value),
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not write {key}: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not delete {key}: {e}") from e


def create_kv_store(backend: str, data_dir: str | Path) -> KeyValueStore:
    """
    Create the on-device store for a backend name.

    Args:
        backend: "file" or "sqlite".
        data_dir: Directory for on-device data.

    Returns:
        Configured KeyValueStore.
    """
    data_dir = Path(data_dir).expanduser()
    if backend == "sqlite":
        store: KeyValueStore = SqliteKeyValueStore(data_dir / "progress.db")
    elif backend == "file":
        store = FileKeyValueStore(data_dir)
    else:
        raise ValueError(f"Unknown storage backend: {backend!r}")
    logger.info(f"Local storage ready ({backend} at {data_dir})")
    return store
