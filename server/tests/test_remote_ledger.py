"""
Tests for the remote ledger.

These tests cover:
- PostgresRemoteLedger: idempotent additive merges and reads
- UnavailableRemoteLedger: offline behaviour
- Global remote ledger lifecycle

The asyncpg pool and connection are mocked; no database is needed.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from models.game_result import Difficulty, GameResult
from models.ledger import LedgerAggregate
from stores.remote_ledger import (
    SCHEMA_SQL,
    PostgresRemoteLedger,
    RemoteWriteError,
    UnavailableRemoteLedger,
    close_remote_ledger,
    get_remote_ledger,
)


# =============================================================================
# Fixtures
# =============================================================================

def async_cm(value=None):
    """Mock usable as `async with`."""
    cm = MagicMock()
    cm.__aenter__ = AsyncMock(return_value=value)
    cm.__aexit__ = AsyncMock(return_value=False)
    return cm


@pytest.fixture
def mock_conn():
    conn = MagicMock()
    conn.transaction.return_value = async_cm()
    conn.fetchval = AsyncMock()
    conn.fetchrow = AsyncMock()
    conn.fetch = AsyncMock(return_value=[])
    conn.execute = AsyncMock()
    return conn


@pytest.fixture
def mock_pool(mock_conn):
    pool = MagicMock()
    pool.acquire.return_value = async_cm(mock_conn)
    pool.close = AsyncMock()
    return pool


@pytest.fixture
def ledger(mock_pool):
    return PostgresRemoteLedger(mock_pool)


def expert_delta(xp=100):
    played_at = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    return LedgerAggregate.from_result(GameResult.create("expert", 300, 0, 0, True), xp, played_at)


# =============================================================================
# Merges
# =============================================================================

class TestMergeAggregate:

    @pytest.mark.asyncio
    async def test_applies_new_key(self, ledger, mock_conn):
        mock_conn.fetchval.side_effect = [1, 1100]

        applied = await ledger.merge_aggregate("u1", expert_delta(), "game:abc")

        assert applied is True
        claim_args = mock_conn.fetchval.call_args_list[0].args
        assert "sync_applied" in claim_args[0]
        assert claim_args[1:] == ("game:abc", "u1")

        profile_args = mock_conn.fetchval.call_args_list[1].args
        assert profile_args[1:6] == ("u1", 1, 1, 300, 100)

        # level update, one row per played difficulty, then the game history row
        assert mock_conn.execute.call_count == 3
        level_args = mock_conn.execute.call_args_list[0].args
        assert level_args[1:] == ("u1", 10)
        stats_args = mock_conn.execute.call_args_list[1].args
        assert stats_args[2] == Difficulty.EXPERT.value
        assert stats_args[-1] == 1  # perfect_games

    @pytest.mark.asyncio
    async def test_single_game_writes_history_row(self, ledger, mock_conn):
        mock_conn.fetchval.side_effect = [1, 100]

        await ledger.merge_aggregate("u1", expert_delta(xp=100), "game:abc")

        history_args = mock_conn.execute.call_args_list[-1].args
        assert "sudoku_game_history" in history_args[0]
        assert history_args[1:] == (
            "u1",
            "game:abc",
            "expert",
            300,
            0,
            0,
            True,
            True,
            100,
            datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc),
        )

    @pytest.mark.asyncio
    async def test_multi_game_delta_writes_no_history(self, ledger, mock_conn):
        mock_conn.fetchval.side_effect = [1, 200]
        delta = expert_delta().merge(expert_delta())

        await ledger.merge_aggregate("u1", delta, "migration:dev1")

        # level update and the expert row only
        assert mock_conn.execute.call_count == 2
        for call in mock_conn.execute.call_args_list:
            assert "sudoku_game_history" not in call.args[0]

    def test_schema_has_history_table(self):
        assert "CREATE TABLE IF NOT EXISTS sudoku_game_history" in SCHEMA_SQL

    @pytest.mark.asyncio
    async def test_runs_in_transaction(self, ledger, mock_conn):
        mock_conn.fetchval.side_effect = [1, 100]
        await ledger.merge_aggregate("u1", expert_delta(), "game:abc")
        mock_conn.transaction.assert_called_once()

    @pytest.mark.asyncio
    async def test_duplicate_key_not_reapplied(self, ledger, mock_conn):
        mock_conn.fetchval.return_value = None

        applied = await ledger.merge_aggregate("u1", expert_delta(), "migration:dev1")

        assert applied is False
        assert mock_conn.fetchval.call_count == 1
        mock_conn.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_connection_error_is_remote_write_error(self, ledger, mock_conn):
        mock_conn.fetchval.side_effect = OSError("connection refused")

        with pytest.raises(RemoteWriteError):
            await ledger.merge_aggregate("u1", expert_delta(), "game:abc")


# =============================================================================
# Reads
# =============================================================================

class TestReadAggregate:

    @pytest.mark.asyncio
    async def test_unknown_user(self, ledger, mock_conn):
        mock_conn.fetchrow.return_value = None
        assert await ledger.read_aggregate("nobody") is None
        mock_conn.fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_builds_aggregate(self, ledger, mock_conn):
        first = datetime(2026, 1, 1, tzinfo=timezone.utc)
        mock_conn.fetchrow.return_value = {
            "total_games_played": 3,
            "total_games_won": 2,
            "total_playtime_seconds": 900,
            "xp": 420,
            "first_game_at": first,
            "last_game_at": None,
        }
        mock_conn.fetch.return_value = [{
            "difficulty": "pro",
            "games_played": 3,
            "games_won": 2,
            "total_time_seconds": 900,
            "win_time_seconds": 500,
            "best_time_seconds": 200,
            "hints_used": 1,
            "mistakes_total": 4,
            "perfect_games": 1,
        }]

        aggregate = await ledger.read_aggregate("u1")

        assert aggregate.games_played == 3
        assert aggregate.xp == 420
        assert aggregate.level == 5
        assert aggregate.first_game_at == first
        assert aggregate.last_game_at is None
        assert aggregate.per_difficulty[Difficulty.PRO].best_time_seconds == 200
        assert aggregate.per_difficulty[Difficulty.MEDIUM].games_played == 0

    @pytest.mark.asyncio
    async def test_read_error(self, ledger, mock_conn):
        mock_conn.fetchrow.side_effect = OSError("timeout")
        with pytest.raises(RemoteWriteError):
            await ledger.read_aggregate("u1")


# =============================================================================
# Offline ledger & lifecycle
# =============================================================================

class TestUnavailableRemoteLedger:

    @pytest.mark.asyncio
    async def test_always_offline(self):
        remote = UnavailableRemoteLedger()
        with pytest.raises(RemoteWriteError):
            await remote.read_aggregate("u1")
        with pytest.raises(RemoteWriteError):
            await remote.merge_aggregate("u1", expert_delta(), "game:x")

    @pytest.mark.asyncio
    async def test_global_instance_without_url(self):
        try:
            remote = await get_remote_ledger("")
            assert isinstance(remote, UnavailableRemoteLedger)
            assert await get_remote_ledger("") is remote
        finally:
            await close_remote_ledger()

    @pytest.mark.asyncio
    async def test_close_releases_pool(self, ledger, mock_pool):
        await ledger.close()
        mock_pool.close.assert_awaited_once()
