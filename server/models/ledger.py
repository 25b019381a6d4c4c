"""
Ledger models for local and remote stats aggregation.

A LedgerAggregate holds running totals for one device (before migration)
or one user (in the remote ledger). Aggregates only ever grow: every
mutation is an additive merge, and `level` is always recomputed from `xp`
through leveling.level_for_xp(), never set independently.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from typing import Any, Optional

import leveling
from models.game_result import Difficulty, GameResult


def _parse_dt(val: Any) -> Optional[datetime]:
    if val is None:
        return None
    if isinstance(val, datetime):
        return val
    return datetime.fromisoformat(val)


def _min_optional(a: Optional[Any], b: Optional[Any]) -> Optional[Any]:
    if a is None:
        return b
    if b is None:
        return a
    return min(a, b)


def _max_optional(a: Optional[Any], b: Optional[Any]) -> Optional[Any]:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


@dataclass(frozen=True)
class DifficultyStats:
    """
    Totals for a single difficulty tier.

    Attributes:
        games_played: Games finished at this difficulty.
        games_won: Games solved at this difficulty.
        total_time_seconds: Time spent across all games.
        win_time_seconds: Time spent across won games (for the average).
        best_time_seconds: Fastest win, None until the first win.
        hints_used: Hints requested across all games.
        mistakes_total: Mistakes made across all games.
        perfect_games: Wins with zero mistakes.
    """
    games_played: int = 0
    games_won: int = 0
    total_time_seconds: int = 0
    win_time_seconds: int = 0
    best_time_seconds: Optional[int] = None
    hints_used: int = 0
    mistakes_total: int = 0
    perfect_games: int = 0

    @property
    def avg_time_seconds(self) -> Optional[int]:
        """Average time of won games."""
        if self.games_won == 0:
            return None
        return round(self.win_time_seconds / self.games_won)

    @property
    def win_rate(self) -> int:
        """Win percentage, 0 when nothing was played."""
        if self.games_played == 0:
            return 0
        return round(self.games_won / self.games_played * 100)

    @classmethod
    def from_result(cls, result: GameResult) -> "DifficultyStats":
        return cls(
            games_played=1,
            games_won=1 if result.is_win else 0,
            total_time_seconds=result.time_seconds,
            win_time_seconds=result.time_seconds if result.is_win else 0,
            best_time_seconds=result.time_seconds if result.is_win else None,
            hints_used=result.hints_used,
            mistakes_total=result.mistakes,
            perfect_games=1 if result.is_perfect else 0,
        )

    def merge(self, other: "DifficultyStats") -> "DifficultyStats":
        """Additively combine two sets of totals."""
        return DifficultyStats(
            games_played=self.games_played + other.games_played,
            games_won=self.games_won + other.games_won,
            total_time_seconds=self.total_time_seconds + other.total_time_seconds,
            win_time_seconds=self.win_time_seconds + other.win_time_seconds,
            best_time_seconds=_min_optional(self.best_time_seconds, other.best_time_seconds),
            hints_used=self.hints_used + other.hints_used,
            mistakes_total=self.mistakes_total + other.mistakes_total,
            perfect_games=self.perfect_games + other.perfect_games,
        )

    def to_dict(self) -> dict:
        return {
            "games_played": self.games_played,
            "games_won": self.games_won,
            "total_time_seconds": self.total_time_seconds,
            "win_time_seconds": self.win_time_seconds,
            "best_time_seconds": self.best_time_seconds,
            "hints_used": self.hints_used,
            "mistakes_total": self.mistakes_total,
            "perfect_games": self.perfect_games,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "DifficultyStats":
        return cls(
            games_played=int(d.get("games_played", 0)),
            games_won=int(d.get("games_won", 0)),
            total_time_seconds=int(d.get("total_time_seconds", 0)),
            win_time_seconds=int(d.get("win_time_seconds", 0)),
            best_time_seconds=d.get("best_time_seconds"),
            hints_used=int(d.get("hints_used", 0)),
            mistakes_total=int(d.get("mistakes_total", 0)),
            perfect_games=int(d.get("perfect_games", 0)),
        )


def _empty_per_difficulty() -> dict[Difficulty, DifficultyStats]:
    return {difficulty: DifficultyStats() for difficulty in Difficulty}


@dataclass(frozen=True)
class LedgerAggregate:
    """
    Running totals for a device or a user.

    Attributes:
        games_played: Total games finished.
        games_won: Total games solved (never exceeds games_played).
        total_playtime_seconds: Total time spent across all games.
        xp: Cumulative experience points.
        level: Level derived from xp.
        per_difficulty: Totals broken down by difficulty.
        first_game_at: When the first counted game was recorded.
        last_game_at: When the most recent counted game was recorded.
    """
    games_played: int = 0
    games_won: int = 0
    total_playtime_seconds: int = 0
    xp: int = 0
    level: int = 1
    per_difficulty: dict[Difficulty, DifficultyStats] = field(default_factory=_empty_per_difficulty)
    first_game_at: Optional[datetime] = None
    last_game_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.games_won > self.games_played:
            raise ValueError(
                f"games_won ({self.games_won}) exceeds games_played ({self.games_played})"
            )
        if min(self.games_played, self.games_won, self.total_playtime_seconds, self.xp) < 0:
            raise ValueError("Ledger totals cannot be negative")
        per_difficulty = _empty_per_difficulty()
        per_difficulty.update(self.per_difficulty)
        object.__setattr__(self, "per_difficulty", per_difficulty)
        object.__setattr__(self, "level", leveling.level_for_xp(self.xp))

    @property
    def is_empty(self) -> bool:
        """True when no game or XP has been counted."""
        return self.games_played == 0 and self.xp == 0

    @property
    def level_info(self) -> "leveling.LevelInfo":
        return leveling.level_from_xp(self.xp)

    @classmethod
    def from_result(
        cls,
        result: GameResult,
        xp: int,
        played_at: Optional[datetime] = None,
    ) -> "LedgerAggregate":
        """Build the one-game delta for a result."""
        played_at = played_at or datetime.now(timezone.utc)
        return cls(
            games_played=1,
            games_won=1 if result.is_win else 0,
            total_playtime_seconds=result.time_seconds,
            xp=xp,
            per_difficulty={result.difficulty: DifficultyStats.from_result(result)},
            first_game_at=played_at,
            last_game_at=played_at,
        )

    def apply(
        self,
        result: GameResult,
        xp: int,
        played_at: Optional[datetime] = None,
    ) -> "LedgerAggregate":
        """Return a new aggregate with one more game counted."""
        return self.merge(LedgerAggregate.from_result(result, xp, played_at))

    def single_game(self) -> Optional[GameResult]:
        """The game this aggregate was built from, if it counts exactly one."""
        if self.games_played != 1:
            return None
        for difficulty, stats in self.per_difficulty.items():
            if stats.games_played == 1:
                return GameResult(
                    difficulty=difficulty,
                    time_seconds=stats.total_time_seconds,
                    mistakes=stats.mistakes_total,
                    hints_used=stats.hints_used,
                    is_win=stats.games_won == 1,
                    is_perfect=stats.perfect_games == 1,
                )
        return None

    def merge(self, delta: "LedgerAggregate") -> "LedgerAggregate":
        """
        Additively merge another aggregate into this one.

        Totals and XP are summed; the level is recomputed from the summed XP.
        """
        per_difficulty = {
            difficulty: self.per_difficulty[difficulty].merge(delta.per_difficulty[difficulty])
            for difficulty in Difficulty
        }
        return replace(
            self,
            games_played=self.games_played + delta.games_played,
            games_won=self.games_won + delta.games_won,
            total_playtime_seconds=self.total_playtime_seconds + delta.total_playtime_seconds,
            xp=self.xp + delta.xp,
            per_difficulty=per_difficulty,
            first_game_at=_min_optional(self.first_game_at, delta.first_game_at),
            last_game_at=_max_optional(self.last_game_at, delta.last_game_at),
        )

    def to_dict(self) -> dict:
        """Serialize aggregate to dictionary for JSON storage."""
        return {
            "games_played": self.games_played,
            "games_won": self.games_won,
            "total_playtime_seconds": self.total_playtime_seconds,
            "xp": self.xp,
            "level": self.level,
            "per_difficulty": {
                difficulty.value: stats.to_dict()
                for difficulty, stats in self.per_difficulty.items()
            },
            "first_game_at": self.first_game_at.isoformat() if self.first_game_at else None,
            "last_game_at": self.last_game_at.isoformat() if self.last_game_at else None,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "LedgerAggregate":
        """Deserialize aggregate from dictionary. The stored level is ignored."""
        per_difficulty = {
            Difficulty(name): DifficultyStats.from_dict(stats)
            for name, stats in d.get("per_difficulty", {}).items()
        }
        return cls(
            games_played=int(d.get("games_played", 0)),
            games_won=int(d.get("games_won", 0)),
            total_playtime_seconds=int(d.get("total_playtime_seconds", 0)),
            xp=int(d.get("xp", 0)),
            per_difficulty=per_difficulty,
            first_game_at=_parse_dt(d.get("first_game_at")),
            last_game_at=_parse_dt(d.get("last_game_at")),
        )


@dataclass(frozen=True)
class StreakStats:
    """
    Daily win streak of one device.

    Streaks depend on the order games were played on a single device, so
    they are kept in the device ledger only and never sent as part of a
    remote delta.

    Attributes:
        current_streak: Consecutive days with at least one win.
        longest_streak: Best current_streak ever reached.
        last_win_date: Day of the most recent win.
    """
    current_streak: int = 0
    longest_streak: int = 0
    last_win_date: Optional[date] = None

    def record(self, is_win: bool, played_on: date) -> "StreakStats":
        """
        Update the streak for a game played on `played_on`.

        A win on the day after the last win extends the streak, a win on
        the same day keeps it, and a win after a longer gap starts over at
        one. A loss only resets the streak once more than a day has passed
        since the last win.
        """
        gap = (played_on - self.last_win_date).days if self.last_win_date else None

        if not is_win:
            if gap is not None and gap > 1:
                return replace(self, current_streak=0)
            return self

        if gap is None or gap > 1:
            current = 1
        elif gap == 1:
            current = self.current_streak + 1
        else:
            current = max(self.current_streak, 1)

        return StreakStats(
            current_streak=current,
            longest_streak=max(self.longest_streak, current),
            last_win_date=max(played_on, self.last_win_date) if self.last_win_date else played_on,
        )

    def combine(self, other: "StreakStats") -> "StreakStats":
        """Keep the streak with the most recent win and the best longest streak."""
        latest = self
        if other.last_win_date and (self.last_win_date is None or other.last_win_date > self.last_win_date):
            latest = other
        return replace(latest, longest_streak=max(self.longest_streak, other.longest_streak))

    def to_dict(self) -> dict:
        return {
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "last_win_date": self.last_win_date.isoformat() if self.last_win_date else None,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "StreakStats":
        last = d.get("last_win_date")
        return cls(
            current_streak=int(d.get("current_streak", 0)),
            longest_streak=int(d.get("longest_streak", 0)),
            last_win_date=date.fromisoformat(last) if last else None,
        )


@dataclass(frozen=True)
class PendingSyncEntry:
    """
    A recorded game whose remote write has not been confirmed.

    Attributes:
        entry_id: Unique id, also used as the remote idempotency key.
        user_id: User the game was recorded for.
        result: The recorded game.
        xp_awarded: XP computed at record time.
        enqueued_at: When the entry was queued (UTC).
        attempts: Failed flush attempts so far.
    """
    user_id: str
    result: GameResult
    xp_awarded: int
    entry_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    attempts: int = 0

    @property
    def idempotency_key(self) -> str:
        return f"game:{self.entry_id}"

    def to_delta(self) -> LedgerAggregate:
        """The contribution of this entry to a remote aggregate."""
        return LedgerAggregate.from_result(self.result, self.xp_awarded, self.enqueued_at)

    def to_dict(self) -> dict:
        return {
            "entry_id": self.entry_id,
            "user_id": self.user_id,
            "result": self.result.to_dict(),
            "xp_awarded": self.xp_awarded,
            "enqueued_at": self.enqueued_at.isoformat(),
            "attempts": self.attempts,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "PendingSyncEntry":
        return cls(
            entry_id=d["entry_id"],
            user_id=d["user_id"],
            result=GameResult.from_dict(d["result"]),
            xp_awarded=int(d["xp_awarded"]),
            enqueued_at=_parse_dt(d["enqueued_at"]),
            attempts=int(d.get("attempts", 0)),
        )
