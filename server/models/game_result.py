"""
Game result model for finished Sudoku games.

A GameResult is produced once per finished game by the puzzle UI and is
immutable afterwards. Every consumer (XP calculation, local ledger, sync
queue, remote ledger) receives the same validated value.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class InvariantViolation(ValueError):
    """Raised when a game result or XP value breaks a model invariant."""
    pass


class Difficulty(str, Enum):
    """Puzzle difficulty tiers, ordered from easiest to hardest."""
    MEDIUM = "medium"
    EXPERT = "expert"
    PRO = "pro"

    @property
    def tier(self) -> int:
        """Position of the difficulty in the easy-to-hard order."""
        return list(Difficulty).index(self)


def _check_count(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvariantViolation(f"{name} must be an integer, got {value!r}")
    if value < 0:
        raise InvariantViolation(f"{name} must be non-negative, got {value}")


@dataclass(frozen=True)
class GameResult:
    """
    Outcome of a single finished game.

    Attributes:
        difficulty: Puzzle difficulty tier.
        time_seconds: Time taken to finish (or abandon) the puzzle.
        mistakes: Wrong entries made during the game.
        hints_used: Hints requested during the game.
        is_win: Whether the puzzle was solved.
        is_perfect: Win with zero mistakes.
    """
    difficulty: Difficulty
    time_seconds: int
    mistakes: int
    hints_used: int
    is_win: bool
    is_perfect: bool = False

    def __post_init__(self) -> None:
        try:
            difficulty = Difficulty(self.difficulty)
        except ValueError:
            raise InvariantViolation(f"Unknown difficulty: {self.difficulty!r}") from None
        object.__setattr__(self, "difficulty", difficulty)

        _check_count("time_seconds", self.time_seconds)
        _check_count("mistakes", self.mistakes)
        _check_count("hints_used", self.hints_used)

        if self.is_perfect and not self.is_win:
            raise InvariantViolation("A perfect game must be a win")
        if self.is_perfect and self.mistakes != 0:
            raise InvariantViolation(
                f"A perfect game cannot have mistakes (mistakes={self.mistakes})"
            )

    @classmethod
    def create(
        cls,
        difficulty: Difficulty | str,
        time_seconds: int,
        mistakes: int,
        hints_used: int,
        is_win: bool,
    ) -> "GameResult":
        """Build a result from raw gameplay values, deriving is_perfect."""
        return cls(
            difficulty=difficulty,
            time_seconds=time_seconds,
            mistakes=mistakes,
            hints_used=hints_used,
            is_win=bool(is_win),
            is_perfect=bool(is_win) and mistakes == 0,
        )

    def to_dict(self) -> dict:
        """Serialize result to dictionary for JSON storage."""
        return {
            "difficulty": self.difficulty.value,
            "time_seconds": self.time_seconds,
            "mistakes": self.mistakes,
            "hints_used": self.hints_used,
            "is_win": self.is_win,
            "is_perfect": self.is_perfect,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "GameResult":
        """Deserialize result from dictionary."""
        return cls(
            difficulty=d["difficulty"],
            time_seconds=d["time_seconds"],
            mistakes=d["mistakes"],
            hints_used=d["hints_used"],
            is_win=d["is_win"],
            is_perfect=d.get("is_perfect", False),
        )
