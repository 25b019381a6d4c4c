"""
Tests for game result and ledger models.

Run with: pytest test_models.py -v
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from models.game_result import Difficulty, GameResult, InvariantViolation
from models.ledger import DifficultyStats, LedgerAggregate, PendingSyncEntry, StreakStats


# =============================================================================
# GameResult
# =============================================================================

class TestGameResult:

    def test_create_derives_perfect(self):
        assert GameResult.create("expert", 300, 0, 3, True).is_perfect is True
        assert GameResult.create("expert", 300, 1, 0, True).is_perfect is False
        assert GameResult.create("expert", 300, 0, 0, False).is_perfect is False

    def test_difficulty_coerced_from_string(self):
        result = GameResult.create("pro", 100, 0, 0, True)
        assert result.difficulty is Difficulty.PRO

    def test_unknown_difficulty_rejected(self):
        with pytest.raises(InvariantViolation):
            GameResult.create("easy", 100, 0, 0, True)

    @pytest.mark.parametrize("field,value", [
        ("time_seconds", -1),
        ("mistakes", -2),
        ("hints_used", -3),
        ("mistakes", 1.5),
        ("hints_used", True),
    ])
    def test_invalid_counts_rejected(self, field, value):
        values = {"time_seconds": 60, "mistakes": 0, "hints_used": 0}
        values[field] = value
        with pytest.raises(InvariantViolation):
            GameResult(difficulty="medium", is_win=True, **values)

    def test_perfect_loss_rejected(self):
        with pytest.raises(InvariantViolation):
            GameResult("medium", 60, 0, 0, is_win=False, is_perfect=True)

    def test_perfect_with_mistakes_rejected(self):
        with pytest.raises(InvariantViolation):
            GameResult("medium", 60, 2, 0, is_win=True, is_perfect=True)

    def test_immutable(self):
        result = GameResult.create("medium", 60, 0, 0, True)
        with pytest.raises(AttributeError):
            result.mistakes = 3

    def test_dict_round_trip(self):
        result = GameResult.create("expert", 321, 2, 1, True)
        assert GameResult.from_dict(result.to_dict()) == result

    def test_difficulty_tier_order(self):
        assert [d.tier for d in Difficulty] == [0, 1, 2]


# =============================================================================
# DifficultyStats
# =============================================================================

class TestDifficultyStats:

    def test_from_loss(self):
        stats = DifficultyStats.from_result(GameResult.create("medium", 500, 4, 2, False))
        assert stats.games_played == 1
        assert stats.games_won == 0
        assert stats.best_time_seconds is None
        assert stats.avg_time_seconds is None
        assert stats.win_rate == 0

    def test_merge_keeps_best_time(self):
        a = DifficultyStats.from_result(GameResult.create("medium", 500, 0, 0, True))
        b = DifficultyStats.from_result(GameResult.create("medium", 300, 1, 0, True))
        c = DifficultyStats.from_result(GameResult.create("medium", 200, 3, 0, False))

        merged = a.merge(b).merge(c)

        assert merged.games_played == 3
        assert merged.games_won == 2
        assert merged.best_time_seconds == 300
        assert merged.avg_time_seconds == 400
        assert merged.total_time_seconds == 1000
        assert merged.perfect_games == 1
        assert merged.mistakes_total == 4
        assert merged.win_rate == 67


# =============================================================================
# LedgerAggregate
# =============================================================================

class TestLedgerAggregate:

    def test_empty(self):
        aggregate = LedgerAggregate()
        assert aggregate.is_empty
        assert aggregate.level == 1
        assert set(aggregate.per_difficulty) == set(Difficulty)

    def test_apply_counts_one_game(self):
        result = GameResult.create("pro", 900, 0, 0, True)
        aggregate = LedgerAggregate().apply(result, 165)

        assert aggregate.games_played == 1
        assert aggregate.games_won == 1
        assert aggregate.total_playtime_seconds == 900
        assert aggregate.xp == 165
        assert aggregate.level == 3
        assert aggregate.per_difficulty[Difficulty.PRO].perfect_games == 1
        assert aggregate.per_difficulty[Difficulty.MEDIUM].games_played == 0

    def test_merge_is_additive(self):
        early = datetime(2026, 1, 1, tzinfo=timezone.utc)
        late = early + timedelta(days=3)
        a = LedgerAggregate.from_result(GameResult.create("medium", 100, 0, 0, True), 65, early)
        b = LedgerAggregate.from_result(GameResult.create("expert", 200, 1, 0, False), 10, late)

        merged = a.merge(b)

        assert merged.games_played == 2
        assert merged.games_won == 1
        assert merged.total_playtime_seconds == 300
        assert merged.xp == 75
        assert merged.first_game_at == early
        assert merged.last_game_at == late
        assert a.merge(b) == b.merge(a)

    def test_level_recomputed_from_xp(self):
        assert LedgerAggregate(xp=1000, level=99).level == 10

    def test_won_cannot_exceed_played(self):
        with pytest.raises(ValueError):
            LedgerAggregate(games_played=1, games_won=2)

    def test_negative_totals_rejected(self):
        with pytest.raises(ValueError):
            LedgerAggregate(xp=-5)

    def test_dict_round_trip(self):
        result = GameResult.create("expert", 250, 0, 1, True)
        aggregate = LedgerAggregate().apply(result, 100, datetime(2026, 5, 2, tzinfo=timezone.utc))
        assert LedgerAggregate.from_dict(aggregate.to_dict()) == aggregate

    def test_from_dict_ignores_stored_level(self):
        assert LedgerAggregate.from_dict({"xp": 400, "level": 1}).level == 5

    def test_single_game_rebuilds_result(self):
        result = GameResult.create("pro", 500, 1, 2, True)
        aggregate = LedgerAggregate().apply(result, 140)
        assert aggregate.single_game() == result

    def test_single_game_none_for_many(self):
        result = GameResult.create("pro", 500, 1, 2, True)
        aggregate = LedgerAggregate().apply(result, 140).apply(result, 140)
        assert aggregate.single_game() is None
        assert LedgerAggregate().single_game() is None


# =============================================================================
# StreakStats
# =============================================================================

DAY_ONE = date(2026, 4, 1)


class TestStreakStats:

    def test_first_win_starts_streak(self):
        streak = StreakStats().record(True, DAY_ONE)
        assert streak == StreakStats(current_streak=1, longest_streak=1, last_win_date=DAY_ONE)

    def test_consecutive_days_extend(self):
        streak = StreakStats()
        for offset in range(3):
            streak = streak.record(True, DAY_ONE + timedelta(days=offset))
        assert streak.current_streak == 3
        assert streak.longest_streak == 3

    def test_same_day_win_keeps_streak(self):
        streak = StreakStats().record(True, DAY_ONE).record(True, DAY_ONE)
        assert streak.current_streak == 1

    def test_gap_restarts_at_one(self):
        streak = StreakStats().record(True, DAY_ONE).record(True, DAY_ONE + timedelta(days=1))
        streak = streak.record(True, DAY_ONE + timedelta(days=5))
        assert streak.current_streak == 1
        assert streak.longest_streak == 2

    def test_loss_next_day_keeps_streak(self):
        streak = StreakStats().record(True, DAY_ONE).record(False, DAY_ONE + timedelta(days=1))
        assert streak.current_streak == 1

    def test_loss_after_gap_resets(self):
        streak = StreakStats().record(True, DAY_ONE).record(False, DAY_ONE + timedelta(days=3))
        assert streak.current_streak == 0
        assert streak.longest_streak == 1
        assert streak.last_win_date == DAY_ONE

    def test_loss_without_wins_is_noop(self):
        assert StreakStats().record(False, DAY_ONE) == StreakStats()

    def test_combine_prefers_latest_win(self):
        older = StreakStats(current_streak=4, longest_streak=6, last_win_date=DAY_ONE)
        newer = StreakStats(current_streak=1, longest_streak=1, last_win_date=DAY_ONE + timedelta(days=9))
        combined = older.combine(newer)
        assert combined.current_streak == 1
        assert combined.longest_streak == 6
        assert combined.last_win_date == newer.last_win_date

    def test_dict_round_trip(self):
        streak = StreakStats(current_streak=2, longest_streak=5, last_win_date=DAY_ONE)
        assert StreakStats.from_dict(streak.to_dict()) == streak
        assert StreakStats.from_dict({}) == StreakStats()


# =============================================================================
# PendingSyncEntry
# =============================================================================

class TestPendingSyncEntry:

    def test_idempotency_key_uses_entry_id(self):
        entry = PendingSyncEntry(user_id="u1", result=GameResult.create("medium", 60, 0, 0, True), xp_awarded=65)
        assert entry.idempotency_key == f"game:{entry.entry_id}"

    def test_entry_ids_unique(self):
        result = GameResult.create("medium", 60, 0, 0, True)
        ids = {PendingSyncEntry(user_id="u1", result=result, xp_awarded=65).entry_id for _ in range(50)}
        assert len(ids) == 50

    def test_delta_matches_result(self):
        entry = PendingSyncEntry(
            user_id="u1",
            result=GameResult.create("expert", 240, 2, 0, True),
            xp_awarded=75,
        )
        delta = entry.to_delta()
        assert delta.games_played == 1
        assert delta.xp == 75
        assert delta.per_difficulty[Difficulty.EXPERT].best_time_seconds == 240
        assert delta.last_game_at == entry.enqueued_at

    def test_dict_round_trip_keeps_attempts(self):
        entry = PendingSyncEntry(
            user_id="u1",
            result=GameResult.create("pro", 800, 0, 0, False),
            xp_awarded=10,
            attempts=2,
        )
        restored = PendingSyncEntry.from_dict(entry.to_dict())
        assert restored == entry
        assert restored.attempts == 2
