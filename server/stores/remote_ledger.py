"""
Remote per-user ledger for synced Sudoku stats.

The remote ledger is authoritative for a user once the device has
migrated. It only supports additive merges: there is no operation that
overwrites a user's totals.

Every merge carries an idempotency key. Keys are recorded in the same
transaction as the merge, so replaying a merge whose acknowledgement was
lost (timeout, crash before dequeue) is acknowledged without counting
the games twice.
"""

import logging
from datetime import timezone
from typing import Optional

import asyncpg

from leveling import level_for_xp
from models.game_result import Difficulty, GameResult
from models.ledger import DifficultyStats, LedgerAggregate

logger = logging.getLogger(__name__)


class RemoteWriteError(Exception):
    """Raised when the remote ledger cannot be read or written."""
    pass


# SQL schema for the remote ledger
SCHEMA_SQL = """
-- Per-user totals
CREATE TABLE IF NOT EXISTS sudoku_profiles (
    user_id VARCHAR(64) PRIMARY KEY,
    total_games_played INT DEFAULT 0,
    total_games_won INT DEFAULT 0,
    total_playtime_seconds BIGINT DEFAULT 0,
    xp BIGINT DEFAULT 0,
    level INT DEFAULT 1,
    first_game_at TIMESTAMPTZ,
    last_game_at TIMESTAMPTZ,
    updated_at TIMESTAMPTZ DEFAULT NOW()
);

-- Per-user, per-difficulty totals
CREATE TABLE IF NOT EXISTS sudoku_game_stats (
    user_id VARCHAR(64) NOT NULL,
    difficulty VARCHAR(10) NOT NULL,
    games_played INT DEFAULT 0,
    games_won INT DEFAULT 0,
    total_time_seconds BIGINT DEFAULT 0,
    win_time_seconds BIGINT DEFAULT 0,
    best_time_seconds INT,
    hints_used INT DEFAULT 0,
    mistakes_total INT DEFAULT 0,
    perfect_games INT DEFAULT 0,
    updated_at TIMESTAMPTZ DEFAULT NOW(),
    PRIMARY KEY (user_id, difficulty)
);

-- One row per synced game
CREATE TABLE IF NOT EXISTS sudoku_game_history (
    id BIGSERIAL PRIMARY KEY,
    user_id VARCHAR(64) NOT NULL,
    idempotency_key VARCHAR(100) NOT NULL UNIQUE,
    difficulty VARCHAR(10) NOT NULL,
    time_seconds INT NOT NULL,
    mistakes INT NOT NULL,
    hints_used INT NOT NULL,
    is_win BOOLEAN NOT NULL,
    is_perfect BOOLEAN NOT NULL,
    xp_earned INT NOT NULL,
    played_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_sudoku_history_user ON sudoku_game_history(user_id, played_at DESC);

-- Merges already applied (idempotency keys)
CREATE TABLE IF NOT EXISTS sync_applied (
    idempotency_key VARCHAR(100) PRIMARY KEY,
    user_id VARCHAR(64) NOT NULL,
    applied_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_sync_applied_user ON sync_applied(user_id);
"""


class RemoteLedger:
    """Interface of the remote per-user aggregate store."""

    async def read_aggregate(self, user_id: str) -> Optional[LedgerAggregate]:
        """
        Read a user's aggregate.

        Returns:
            The aggregate, or None if the user has no record.

        Raises:
            RemoteWriteError: If the store is unreachable.
        """
        raise NotImplementedError

    async def merge_aggregate(
        self,
        user_id: str,
        delta: LedgerAggregate,
        idempotency_key: str,
    ) -> bool:
        """
        Add a delta to a user's aggregate.

        Returns:
            True if applied, False if the key had already been applied.

        Raises:
            RemoteWriteError: If the merge was not confirmed.
        """
        raise NotImplementedError

    async def close(self) -> None:
        return None


class UnavailableRemoteLedger(RemoteLedger):
    """Stand-in used when no remote database is configured; always offline."""

    async def read_aggregate(self, user_id: str) -> Optional[LedgerAggregate]:
        raise RemoteWriteError("Remote ledger is not configured")

    async def merge_aggregate(
        self,
        user_id: str,
        delta: LedgerAggregate,
        idempotency_key: str,
    ) -> bool:
        raise RemoteWriteError("Remote ledger is not configured")


class PostgresRemoteLedger(RemoteLedger):
    """
    PostgreSQL-backed remote ledger.

    Uses asyncpg for async database access.
    """

    def __init__(self, pool: asyncpg.Pool):
        """
        Initialize remote ledger with connection pool.

        Args:
            pool: asyncpg connection pool.
        """
        self.pool = pool

    @classmethod
    async def create(cls, postgres_url: str) -> "PostgresRemoteLedger":
        """
        Create a PostgresRemoteLedger with a new connection pool.

        Args:
            postgres_url: PostgreSQL connection URL.

        Returns:
            Configured PostgresRemoteLedger instance.
        """
        pool = await asyncpg.create_pool(postgres_url, min_size=1, max_size=5)
        ledger = cls(pool)
        await ledger.initialize_schema()
        return ledger

    async def initialize_schema(self) -> None:
        """Create database tables if they don't exist."""
        async with self.pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)
        logger.info("Remote ledger schema initialized")

    async def close(self) -> None:
        """Close the connection pool."""
        await self.pool.close()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def read_aggregate(self, user_id: str) -> Optional[LedgerAggregate]:
        try:
            async with self.pool.acquire() as conn:
                profile = await conn.fetchrow(
                    """
                    SELECT total_games_played, total_games_won, total_playtime_seconds,
                           xp, first_game_at, last_game_at
                    FROM sudoku_profiles
                    WHERE user_id = $1
                    """,
                    user_id,
                )
                if not profile:
                    return None

                rows = await conn.fetch(
                    "SELECT * FROM sudoku_game_stats WHERE user_id = $1",
                    user_id,
                )
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            raise RemoteWriteError(f"Failed to read remote aggregate: {e}") from e

        return self._row_to_aggregate(profile, rows)

    # -------------------------------------------------------------------------
    # Merges
    # -------------------------------------------------------------------------

    async def merge_aggregate(
        self,
        user_id: str,
        delta: LedgerAggregate,
        idempotency_key: str,
    ) -> bool:
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    claimed = await conn.fetchval(
                        """
                        INSERT INTO sync_applied (idempotency_key, user_id)
                        VALUES ($1, $2)
                        ON CONFLICT (idempotency_key) DO NOTHING
                        RETURNING 1
                        """,
                        idempotency_key,
                        user_id,
                    )
                    if not claimed:
                        logger.info(f"Merge {idempotency_key} already applied, skipping")
                        return False

                    new_xp = await conn.fetchval(
                        """
                        INSERT INTO sudoku_profiles (
                            user_id, total_games_played, total_games_won,
                            total_playtime_seconds, xp, first_game_at, last_game_at
                        )
                        VALUES ($1, $2, $3, $4, $5, $6, $7)
                        ON CONFLICT (user_id) DO UPDATE SET
                            total_games_played = sudoku_profiles.total_games_played + EXCLUDED.total_games_played,
                            total_games_won = sudoku_profiles.total_games_won + EXCLUDED.total_games_won,
                            total_playtime_seconds = sudoku_profiles.total_playtime_seconds + EXCLUDED.total_playtime_seconds,
                            xp = sudoku_profiles.xp + EXCLUDED.xp,
                            first_game_at = LEAST(sudoku_profiles.first_game_at, EXCLUDED.first_game_at),
                            last_game_at = GREATEST(sudoku_profiles.last_game_at, EXCLUDED.last_game_at),
                            updated_at = NOW()
                        RETURNING xp
                        """,
                        user_id,
                        delta.games_played,
                        delta.games_won,
                        delta.total_playtime_seconds,
                        delta.xp,
                        delta.first_game_at,
                        delta.last_game_at,
                    )

                    await conn.execute(
                        "UPDATE sudoku_profiles SET level = $2 WHERE user_id = $1",
                        user_id,
                        level_for_xp(new_xp),
                    )

                    for difficulty, stats in delta.per_difficulty.items():
                        if stats.games_played == 0:
                            continue
                        await self._merge_difficulty(conn, user_id, difficulty, stats)

                    game = delta.single_game()
                    if game is not None:
                        await self._insert_history(conn, user_id, idempotency_key, game, delta)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            raise RemoteWriteError(f"Failed to merge remote aggregate: {e}") from e

        logger.debug(f"Merged {delta.games_played} games / {delta.xp} XP for user {user_id}")
        return True

    async def _merge_difficulty(
        self,
        conn: asyncpg.Connection,
        user_id: str,
        difficulty: Difficulty,
        stats: DifficultyStats,
    ) -> None:
        await conn.execute(
            """
            INSERT INTO sudoku_game_stats (
                user_id, difficulty, games_played, games_won, total_time_seconds,
                win_time_seconds, best_time_seconds, hints_used, mistakes_total, perfect_games
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            ON CONFLICT (user_id, difficulty) DO UPDATE SET
                games_played = sudoku_game_stats.games_played + EXCLUDED.games_played,
                games_won = sudoku_game_stats.games_won + EXCLUDED.games_won,
                total_time_seconds = sudoku_game_stats.total_time_seconds + EXCLUDED.total_time_seconds,
                win_time_seconds = sudoku_game_stats.win_time_seconds + EXCLUDED.win_time_seconds,
                best_time_seconds = LEAST(sudoku_game_stats.best_time_seconds, EXCLUDED.best_time_seconds),
                hints_used = sudoku_game_stats.hints_used + EXCLUDED.hints_used,
                mistakes_total = sudoku_game_stats.mistakes_total + EXCLUDED.mistakes_total,
                perfect_games = sudoku_game_stats.perfect_games + EXCLUDED.perfect_games,
                updated_at = NOW()
            """,
            user_id,
            difficulty.value,
            stats.games_played,
            stats.games_won,
            stats.total_time_seconds,
            stats.win_time_seconds,
            stats.best_time_seconds,
            stats.hints_used,
            stats.mistakes_total,
            stats.perfect_games,
        )

    async def _insert_history(
        self,
        conn: asyncpg.Connection,
        user_id: str,
        idempotency_key: str,
        game: GameResult,
        delta: LedgerAggregate,
    ) -> None:
        await conn.execute(
            """
            INSERT INTO sudoku_game_history (
                user_id, idempotency_key, difficulty, time_seconds, mistakes,
                hints_used, is_win, is_perfect, xp_earned, played_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            """,
            user_id,
            idempotency_key,
            game.difficulty.value,
            game.time_seconds,
            game.mistakes,
            game.hints_used,
            game.is_win,
            game.is_perfect,
            delta.xp,
            delta.last_game_at,
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _row_to_aggregate(self, profile: asyncpg.Record, rows: list[asyncpg.Record]) -> LedgerAggregate:
        per_difficulty = {
            Difficulty(row["difficulty"]): DifficultyStats(
                games_played=row["games_played"] or 0,
                games_won=row["games_won"] or 0,
                total_time_seconds=row["total_time_seconds"] or 0,
                win_time_seconds=row["win_time_seconds"] or 0,
                best_time_seconds=row["best_time_seconds"],
                hints_used=row["hints_used"] or 0,
                mistakes_total=row["mistakes_total"] or 0,
                perfect_games=row["perfect_games"] or 0,
            )
            for row in rows
        }
        return LedgerAggregate(
            games_played=profile["total_games_played"] or 0,
            games_won=profile["total_games_won"] or 0,
            total_playtime_seconds=profile["total_playtime_seconds"] or 0,
            xp=profile["xp"] or 0,
            per_difficulty=per_difficulty,
            first_game_at=profile["first_game_at"].replace(tzinfo=timezone.utc) if profile["first_game_at"] else None,
            last_game_at=profile["last_game_at"].replace(tzinfo=timezone.utc) if profile["last_game_at"] else None,
        )


# Global remote ledger instance
_remote_ledger: Optional[RemoteLedger] = None


async def get_remote_ledger(postgres_url: str) -> RemoteLedger:
    """
    Get or create the global remote ledger instance.

    Args:
        postgres_url: PostgreSQL connection URL (empty for offline mode).

    Returns:
        RemoteLedger instance.
    """
    global _remote_ledger
    if _remote_ledger is None:
        if postgres_url:
            _remote_ledger = await PostgresRemoteLedger.create(postgres_url)
        else:
            logger.warning("DATABASE_URL not configured - games will stay queued until it is")
            _remote_ledger = UnavailableRemoteLedger()
    return _remote_ledger


async def close_remote_ledger() -> None:
    """Close the global remote ledger connection pool."""
    global _remote_ledger
    if _remote_ledger is not None:
        await _remote_ledger.close()
        _remote_ledger = None
