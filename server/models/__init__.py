"""Models package for the progression engine."""

from .game_result import Difficulty, GameResult, InvariantViolation
from .ledger import DifficultyStats, LedgerAggregate, PendingSyncEntry, StreakStats

__all__ = [
    "Difficulty",
    "GameResult",
    "InvariantViolation",
    "DifficultyStats",
    "LedgerAggregate",
    "PendingSyncEntry",
    "StreakStats",
]
