"""
XP and level calculation for AG Sudoku.

This module is the single source of truth for the level threshold table.
Local previews, the local ledger and the remote ledger all compute levels
through level_from_xp(); nothing else may embed the table.

XP amounts come from the XPPolicy in config.py and can be overridden via
environment variables (see config.py).

Level table:
    Level 1   Beginner       0 XP
    Level 3   Novice       150 XP
    Level 5   Learner      400 XP
    ...
    Level 100 Immortal   50000 XP
"""

from dataclasses import dataclass
from typing import Optional

import config as app_config
from config import XPPolicy
from models.game_result import GameResult, InvariantViolation


@dataclass(frozen=True)
class LevelThreshold:
    """A row of the level table: reaching `xp` grants `level` and `title`."""
    level: int
    xp: int
    title: str


LEVEL_THRESHOLDS: tuple[LevelThreshold, ...] = (
    LevelThreshold(1, 0, "Beginner"),
    LevelThreshold(3, 150, "Novice"),
    LevelThreshold(5, 400, "Learner"),
    LevelThreshold(10, 1000, "Player"),
    LevelThreshold(15, 2000, "Solver"),
    LevelThreshold(20, 3500, "Expert"),
    LevelThreshold(25, 5500, "Master"),
    LevelThreshold(30, 8000, "Champion"),
    LevelThreshold(40, 12000, "Grandmaster"),
    LevelThreshold(50, 18000, "Legend"),
    LevelThreshold(75, 30000, "Mythic"),
    LevelThreshold(100, 50000, "Immortal"),
)


@dataclass(frozen=True)
class LevelInfo:
    """
    Level standing for a cumulative XP total.

    Attributes:
        level: Current level number.
        title: Display title of the current level.
        current_xp: The cumulative XP this info was computed for.
        next_level_xp: Cumulative XP of the next threshold (own threshold at the top tier).
        progress: Percent (0-100) of the way to the next threshold.
    """
    level: int
    title: str
    current_xp: int
    next_level_xp: int
    progress: int

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "title": self.title,
            "current_xp": self.current_xp,
            "next_level_xp": self.next_level_xp,
            "progress": self.progress,
        }


def calculate_xp(result: GameResult, policy: Optional[XPPolicy] = None) -> int:
    """
    Calculate XP earned for a finished game.

    A loss earns participation XP only. A win earns the difficulty base
    amount plus the win bonus, and the perfect bonus when no mistakes
    were made.

    Args:
        result: Validated game result.
        policy: XP amounts to use (defaults to the configured policy).

    Returns:
        XP award, never negative.
    """
    # Looked up per call so reload_config() takes effect
    policy = policy or app_config.config.xp_policy

    if not result.is_win:
        xp = policy.participation_xp
    else:
        xp = policy.base_xp[result.difficulty.value] + policy.win_bonus
        if result.is_perfect:
            xp += policy.perfect_bonus

    if xp < 0:
        raise InvariantViolation(f"Computed negative XP ({xp}) for {result}")
    return xp


def level_from_xp(xp: int) -> LevelInfo:
    """
    Map cumulative XP to a level.

    Scans the table from the top for the highest threshold reached.

    Args:
        xp: Cumulative XP (non-negative).

    Returns:
        LevelInfo for the XP total.
    """
    if xp < 0:
        raise InvariantViolation(f"XP cannot be negative: {xp}")

    index = 0
    for i in range(len(LEVEL_THRESHOLDS) - 1, -1, -1):
        if xp >= LEVEL_THRESHOLDS[i].xp:
            index = i
            break

    current = LEVEL_THRESHOLDS[index]
    following = LEVEL_THRESHOLDS[min(index + 1, len(LEVEL_THRESHOLDS) - 1)]

    needed = following.xp - current.xp
    if needed > 0:
        progress = min(100, round((xp - current.xp) / needed * 100))
    else:
        progress = 100

    return LevelInfo(
        level=current.level,
        title=current.title,
        current_xp=xp,
        next_level_xp=following.xp,
        progress=progress,
    )


def level_for_xp(xp: int) -> int:
    """Level number for a cumulative XP total."""
    return level_from_xp(xp).level
