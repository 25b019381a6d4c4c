"""
Re-entrancy guard for remote sync work.

Migration and queue flushes for the same user must never overlap inside
one process. The guard is a plain in-progress set: acquiring it is a
synchronous check-and-set, so no other task can run between the check
and the set. A caller that finds the guard held returns immediately
instead of waiting.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, TypeVar

from stores.remote_ledger import RemoteWriteError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SyncGuard:
    """Per-user in-progress flag shared by migration and flush."""

    def __init__(self):
        self._active: set[str] = set()

    def try_acquire(self, user_id: str) -> bool:
        """Mark sync work as running for a user. False if already running."""
        if user_id in self._active:
            return False
        self._active.add(user_id)
        return True

    def release(self, user_id: str) -> None:
        self._active.discard(user_id)

    def is_active(self, user_id: str) -> bool:
        return user_id in self._active

    @asynccontextmanager
    async def held(self, user_id: str) -> AsyncIterator[bool]:
        """
        Hold the guard for the duration of a block.

        Yields:
            True if this caller acquired the guard, False if another
            caller already holds it (the block should do nothing).
        """
        acquired = self.try_acquire(user_id)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(user_id)


async def call_remote(awaitable: Awaitable[T], timeout: float) -> T:
    """
    Await a remote ledger call with a deadline.

    A timeout or any unexpected failure is reported as RemoteWriteError:
    an unconfirmed write is never treated as a success.

    Args:
        awaitable: The remote call.
        timeout: Seconds to wait before giving up.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except RemoteWriteError:
        raise
    except asyncio.TimeoutError as e:
        raise RemoteWriteError(f"Remote call timed out after {timeout}s") from e
    except Exception as e:
        logger.error(f"Unexpected remote ledger failure: {e}", exc_info=True)
        raise RemoteWriteError(f"Unexpected remote failure: {e}") from e
