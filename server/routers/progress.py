"""
Progression API router.

Endpoints used by the Sudoku client to record finished games, preview
XP, report sign-in, trigger a sync and read progression status. Remote
sync trouble never produces an error status; it is reported through
`cloud_saved` and pending counts.
"""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from leveling import LEVEL_THRESHOLDS
from logging_config import user_id_var
from models.game_result import GameResult, InvariantViolation
from services.progression_service import ProgressionService, SyncStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/progress", tags=["progress"])


# =============================================================================
# Request/Response Models
# =============================================================================


class GameResultRequest(BaseModel):
    """A finished game as reported by the client."""
    difficulty: Literal["medium", "expert", "pro"]
    time_seconds: int = Field(ge=0)
    mistakes: int = Field(ge=0)
    hints_used: int = Field(ge=0)
    is_win: bool
    user_id: Optional[str] = None


class GameEndResponse(BaseModel):
    """Result shown on the game-over screen."""
    xp_earned: int
    cloud_saved: bool
    new_level: int
    leveled_up: bool
    local_saved: bool


class XPPreviewResponse(BaseModel):
    xp: int


class IdentityRequest(BaseModel):
    """Identity transition; user_id is None on sign-out."""
    user_id: Optional[str] = None


class FlushRequest(BaseModel):
    user_id: str


class FlushResponse(BaseModel):
    synced: int
    remaining: int
    skipped_in_flight: bool


class LevelResponse(BaseModel):
    level: int
    title: str
    current_xp: int
    next_level_xp: int
    progress: int


class StatusResponse(BaseModel):
    """Progression and sync status."""
    migrated: bool
    pending: int
    games_played: int
    games_won: int
    total_playtime_seconds: int
    xp: int
    level: LevelResponse
    current_streak: int = 0
    longest_streak: int = 0
    migration_success: Optional[bool] = None
    migration_conflict: Optional[bool] = None
    synced: Optional[int] = None


class LevelThresholdResponse(BaseModel):
    level: int
    xp: int
    title: str


# =============================================================================
# Dependencies
# =============================================================================

# Set by main.py during startup
_progression_service: Optional[ProgressionService] = None


def set_progression_service(service: Optional[ProgressionService]) -> None:
    """Set the progression service instance (called from main.py)."""
    global _progression_service
    _progression_service = service


def get_progression_service_dep() -> ProgressionService:
    """Dependency to get progression service."""
    if _progression_service is None:
        raise HTTPException(status_code=503, detail="Progression service not initialized")
    return _progression_service


def _to_result(request: GameResultRequest) -> GameResult:
    try:
        return GameResult.create(
            request.difficulty,
            request.time_seconds,
            request.mistakes,
            request.hints_used,
            request.is_win,
        )
    except InvariantViolation as e:
        raise HTTPException(status_code=422, detail=str(e))


def _status_response(status: SyncStatus) -> dict:
    response = {
        "migrated": status.migrated,
        "pending": status.pending,
        "games_played": status.aggregate.games_played,
        "games_won": status.aggregate.games_won,
        "total_playtime_seconds": status.aggregate.total_playtime_seconds,
        "xp": status.aggregate.xp,
        "level": status.level.to_dict(),
        "current_streak": status.streak.current_streak,
        "longest_streak": status.streak.longest_streak,
    }
    if status.migration is not None:
        response["migration_success"] = status.migration.success
        response["migration_conflict"] = status.migration.conflict
    if status.flush is not None:
        response["synced"] = status.flush.synced
    return response


# =============================================================================
# Endpoints
# =============================================================================


@router.post("/games", response_model=GameEndResponse)
async def record_game(
    request: GameResultRequest,
    service: ProgressionService = Depends(get_progression_service_dep),
):
    """Record a finished game locally and, when signed in, remotely."""
    result = _to_result(request)
    if request.user_id:
        user_id_var.set(request.user_id)

    try:
        outcome = await service.record_game_result(
            result.difficulty,
            result.time_seconds,
            result.mistakes,
            result.hints_used,
            result.is_win,
            user_id=request.user_id,
        )
    except InvariantViolation as e:
        raise HTTPException(status_code=422, detail=str(e))

    return outcome.to_dict()


@router.post("/preview", response_model=XPPreviewResponse)
async def preview_xp(
    request: GameResultRequest,
    service: ProgressionService = Depends(get_progression_service_dep),
):
    """XP the given result would earn, without recording it."""
    return {"xp": service.get_xp_preview(_to_result(request))}


@router.post("/identity", response_model=StatusResponse)
async def identity_changed(
    request: IdentityRequest,
    service: ProgressionService = Depends(get_progression_service_dep),
):
    """
    Report that a user signed in (or out).

    On first sign-in the device history is migrated once, then any
    queued games are flushed.
    """
    if request.user_id:
        user_id_var.set(request.user_id)
    status = await service.on_identity_changed(request.user_id)
    return _status_response(status)


@router.post("/flush", response_model=FlushResponse)
async def flush(
    request: FlushRequest,
    service: ProgressionService = Depends(get_progression_service_dep),
):
    """Retry queued remote writes for a user."""
    user_id_var.set(request.user_id)
    result = await service.flush_pending_sync(request.user_id)
    return {
        "synced": result.synced,
        "remaining": result.remaining,
        "skipped_in_flight": result.skipped_in_flight,
    }


@router.get("/status", response_model=StatusResponse)
async def get_status(
    user_id: Optional[str] = Query(None),
    service: ProgressionService = Depends(get_progression_service_dep),
):
    """Migration flag, pending queue size and device progression."""
    return _status_response(await service.status(user_id))


@router.get("/levels", response_model=list[LevelThresholdResponse])
async def get_levels():
    """The level threshold table."""
    return [
        {"level": t.level, "xp": t.xp, "title": t.title}
        for t in LEVEL_THRESHOLDS
    ]
