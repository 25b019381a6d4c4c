"""
Centralized configuration for the AG Sudoku progression engine.

Configuration is loaded from (in order of precedence):
1. Environment variables
2. .env file (if exists)
3. Default values

Usage:
    from config import config
    print(config.DATA_DIR)
    print(config.xp_policy.base_xp)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


def get_env(key: str, default: str = "") -> str:
    """Get environment variable with default."""
    return os.environ.get(key, default)


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable."""
    val = os.environ.get(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    if val in ("false", "0", "no", "off"):
        return False
    return default


def get_env_int(key: str, default: int = 0) -> int:
    """Get integer environment variable."""
    try:
        return int(os.environ.get(key, str(default)))
    except ValueError:
        return default


def get_env_float(key: str, default: float = 0.0) -> float:
    """Get float environment variable."""
    try:
        return float(os.environ.get(key, str(default)))
    except ValueError:
        return default


@dataclass
class XPPolicy:
    """XP award amounts - the single source of truth for XP policy."""
    participation_xp: int = 10
    base_xp: dict[str, int] = field(default_factory=lambda: {
        "medium": 25,
        "expert": 60,
        "pro": 125,
    })
    win_bonus: int = 15
    perfect_bonus: int = 25

    def __post_init__(self) -> None:
        amounts = [self.participation_xp, self.win_bonus, self.perfect_bonus, *self.base_xp.values()]
        if any(amount < 0 for amount in amounts):
            raise ValueError("XP policy amounts must be non-negative")

        tiers = [self.base_xp.get(name) for name in ("medium", "expert", "pro")]
        if None in tiers:
            raise ValueError("XP policy needs a base amount for medium, expert and pro")
        if tiers != sorted(tiers):
            raise ValueError(f"Base XP must not decrease with difficulty: {tiers}")


@dataclass
class SyncConfig:
    """Progression engine configuration."""
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    DEBUG: bool = False

    # HTTP surface
    HOST: str = "127.0.0.1"
    PORT: int = 8000

    # On-device storage
    DATA_DIR: str = str(Path.home() / ".ag_sudoku")
    STORAGE_BACKEND: str = "file"  # "file" or "sqlite"
    KEY_PREFIX: str = "ag_sudoku"

    # Remote ledger (empty = offline, every remote write is queued)
    DATABASE_URL: str = ""
    REMOTE_TIMEOUT_SECONDS: float = 10.0

    xp_policy: XPPolicy = field(default_factory=XPPolicy)

    @classmethod
    def from_env(cls) -> "SyncConfig":
        """Load configuration from environment variables."""
        defaults = XPPolicy()

        return cls(
            ENVIRONMENT=get_env("ENVIRONMENT", "development"),
            LOG_LEVEL=get_env("LOG_LEVEL", "INFO"),
            DEBUG=get_env_bool("DEBUG", False),
            HOST=get_env("HOST", "127.0.0.1"),
            PORT=get_env_int("PORT", 8000),
            DATA_DIR=get_env("DATA_DIR", str(Path.home() / ".ag_sudoku")),
            STORAGE_BACKEND=get_env("STORAGE_BACKEND", "file"),
            KEY_PREFIX=get_env("KEY_PREFIX", "ag_sudoku"),
            DATABASE_URL=get_env("DATABASE_URL", ""),
            REMOTE_TIMEOUT_SECONDS=get_env_float("REMOTE_TIMEOUT_SECONDS", 10.0),
            xp_policy=XPPolicy(
                participation_xp=get_env_int("XP_PARTICIPATION", defaults.participation_xp),
                base_xp={
                    "medium": get_env_int("XP_BASE_MEDIUM", defaults.base_xp["medium"]),
                    "expert": get_env_int("XP_BASE_EXPERT", defaults.base_xp["expert"]),
                    "pro": get_env_int("XP_BASE_PRO", defaults.base_xp["pro"]),
                },
                win_bonus=get_env_int("XP_WIN_BONUS", defaults.win_bonus),
                perfect_bonus=get_env_int("XP_PERFECT_BONUS", defaults.perfect_bonus),
            ),
        )


# Global config instance - loaded once at module import
config = SyncConfig.from_env()


def reload_config() -> SyncConfig:
    """Reload configuration from environment (useful for testing)."""
    global config
    config = SyncConfig.from_env()
    return config
