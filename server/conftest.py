"""
Shared fixtures for progression engine tests.

Provides an in-memory remote ledger double and on-device storage backed
by pytest's tmp_path.
"""

import asyncio
from typing import Optional

import pytest

from config import XPPolicy
from models.ledger import LedgerAggregate
from services.progression_service import ProgressionService
from stores.kv_store import FileKeyValueStore, PersistenceError
from stores.remote_ledger import RemoteLedger, RemoteWriteError


# =============================================================================
# Mock helpers
# =============================================================================

class FakeRemoteLedger(RemoteLedger):
    """In-memory remote ledger that honours idempotency keys."""

    def __init__(self):
        self.aggregates: dict[str, LedgerAggregate] = {}
        self.applied: set[str] = set()
        self.merge_calls = 0
        self.offline = False
        self.fail_after: Optional[int] = None  # succeed this many merges, then fail
        self.gate: Optional[asyncio.Event] = None  # merges wait on this when set

    async def read_aggregate(self, user_id: str) -> Optional[LedgerAggregate]:
        if self.offline:
            raise RemoteWriteError("offline")
        return self.aggregates.get(user_id)

    async def merge_aggregate(self, user_id: str, delta: LedgerAggregate, idempotency_key: str) -> bool:
        self.merge_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.offline:
            raise RemoteWriteError("offline")
        if self.fail_after is not None:
            if self.fail_after <= 0:
                raise RemoteWriteError("server error")
            self.fail_after -= 1
        if idempotency_key in self.applied:
            return False
        self.applied.add(idempotency_key)
        current = self.aggregates.get(user_id, LedgerAggregate())
        self.aggregates[user_id] = current.merge(delta)
        return True

    def totals(self, user_id: str) -> LedgerAggregate:
        return self.aggregates.get(user_id, LedgerAggregate())


class BrokenKeyValueStore(FileKeyValueStore):
    """File store whose writes fail while `broken` is set."""

    def __init__(self, directory):
        super().__init__(directory)
        self.broken = False

    async def set(self, key: str, value: str) -> None:
        if self.broken:
            raise PersistenceError("disk full")
        await super().set(key, value)

    async def delete(self, key: str) -> None:
        if self.broken:
            raise PersistenceError("disk full")
        await super().delete(key)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def policy():
    """XP policy with the default amounts."""
    return XPPolicy()


@pytest.fixture
def kv(tmp_path):
    return BrokenKeyValueStore(tmp_path / "device")


@pytest.fixture
def remote():
    return FakeRemoteLedger()


@pytest.fixture
def progression(kv, remote, policy):
    return ProgressionService.create(kv, remote, key_prefix="test", policy=policy, remote_timeout=1.0)
