"""
Unit tests for leveling, XP accounting, the completion ledger and Hell Week.
"""

from datetime import timedelta

import pytest

from habit_monster.exceptions import DomainPreconditionError, ValidationError
from habit_monster.gamification import (
    HELL_WEEK_DURATION,
    LEVEL_THRESHOLDS,
    apply_xp_delta,
    apply_xp_penalty,
    hell_week_transition,
    level_for,
    level_progress,
    raise_level,
    toggle_completion,
)
from habit_monster.schemas import Habit, User


@pytest.fixture
def user():
    return User(email="hero@example.com", password="x")


@pytest.fixture
def habit():
    return Habit(user_id="u1", name="Read 10 pages")


class TestLevelFor:
    """Level is the number of thresholds met."""

    @pytest.mark.parametrize(
        "xp, level",
        [(0, 1), (99, 1), (100, 2), (299, 2), (600, 4), (19999, 11), (20000, 12), (10**9, 12)],
    )
    def test_known_levels(self, xp, level):
        assert level_for(xp) == level

    def test_monotonic(self):
        levels = [level_for(xp) for xp in range(0, 21000, 50)]
        assert levels == sorted(levels)

    def test_every_threshold_starts_a_level(self):
        for index, threshold in enumerate(LEVEL_THRESHOLDS):
            assert level_for(threshold) == index + 1

    def test_progress_reports_next_threshold(self):
        assert level_progress(150) == {"level": 2, "current_level_xp": 100, "next_level_xp": 300}
        assert level_progress(25000)["next_level_xp"] is None


class TestXPAccounting:
    def test_positive_delta_raises_level(self, user):
        user.platform_xp = 95
        applied = apply_xp_delta(user, 15)
        assert applied == 15
        assert user.platform_xp == 110
        assert user.level == 2

    def test_never_below_zero(self, user):
        user.platform_xp = 10
        apply_xp_delta(user, -15)
        assert user.platform_xp == 0

    def test_never_below_zero_with_hell_week(self, user):
        user.platform_xp = 5
        user.hell_week.is_active = True
        applied = apply_xp_delta(user, -15)
        assert applied == -35
        assert user.platform_xp == 0

    def test_hell_week_inflates_both_directions(self, user):
        user.platform_xp = 500
        user.hell_week.is_active = True
        assert apply_xp_delta(user, 15) == 35
        assert apply_xp_delta(user, -15) == -35
        assert user.platform_xp == 500

    def test_zero_delta_is_untouched_by_hell_week(self, user):
        user.hell_week.is_active = True
        assert apply_xp_delta(user, 0) == 0
        assert user.platform_xp == 0

    def test_losing_xp_keeps_level(self, user):
        user.platform_xp = 110
        user.level = 2
        apply_xp_delta(user, -15)
        assert user.platform_xp == 95
        assert user.level == 2

    def test_raise_level_never_lowers(self, user):
        user.level = 6
        assert raise_level(user) is False
        assert user.level == 6

    def test_penalty_floors_and_keeps_level(self, user):
        user.platform_xp = 60
        user.level = 5
        apply_xp_penalty(user, 100)
        assert user.platform_xp == 0
        assert user.level == 5


class TestCompletionLedger:
    def test_check_pays_xp_once(self, habit, now):
        assert toggle_completion(habit, "2025-03-10", now) == 15
        assert habit.completed_dates == ["2025-03-10"]
        assert habit.xp_granted_dates == {"2025-03-10": now}

    def test_quick_uncheck_refunds(self, habit, now):
        toggle_completion(habit, "2025-03-10", now)
        delta = toggle_completion(habit, "2025-03-10", now + timedelta(seconds=10))
        assert delta == -15
        assert habit.completed_dates == []
        assert habit.xp_granted_dates == {}

    def test_late_uncheck_keeps_xp_and_grant(self, habit, now):
        toggle_completion(habit, "2025-03-10", now)
        delta = toggle_completion(habit, "2025-03-10", now + timedelta(seconds=61))
        assert delta == 0
        assert habit.completed_dates == []
        assert "2025-03-10" in habit.xp_granted_dates

    def test_recheck_after_late_uncheck_pays_nothing(self, habit, now):
        toggle_completion(habit, "2025-03-10", now)
        toggle_completion(habit, "2025-03-10", now + timedelta(minutes=5))
        delta = toggle_completion(habit, "2025-03-10", now + timedelta(minutes=6))
        assert delta == 0
        assert habit.completed_dates == ["2025-03-10"]
        assert habit.xp_granted_dates["2025-03-10"] == now

    def test_undo_window_boundary(self, habit, now):
        toggle_completion(habit, "2025-03-10", now)
        assert toggle_completion(habit, "2025-03-10", now + timedelta(seconds=60)) == 0

    def test_dates_are_sorted_and_unique(self, habit, now):
        for day in ("2025-03-09", "2025-03-07", "2025-03-08"):
            toggle_completion(habit, day, now)
        assert habit.completed_dates == ["2025-03-07", "2025-03-08", "2025-03-09"]

    def test_streak_counters(self, habit, now):
        for day in ("2025-03-01", "2025-03-02", "2025-03-03", "2025-03-05"):
            toggle_completion(habit, day, now)
        assert habit.current_streak == 4
        assert habit.longest_streak == 3

        toggle_completion(habit, "2025-03-02", now + timedelta(minutes=5))
        assert habit.current_streak == 3
        assert habit.longest_streak == 3

    def test_date_is_canonicalised(self, habit, now):
        toggle_completion(habit, "2025-3-7", now)
        assert habit.completed_dates == ["2025-03-07"]

    def test_malformed_date_rejected(self, habit, now):
        with pytest.raises(ValidationError):
            toggle_completion(habit, "yesterday", now)


class TestHellWeek:
    def test_start_requires_level_four(self, user, now):
        user.level = 3
        with pytest.raises(DomainPreconditionError, match="Level 4"):
            hell_week_transition(user, "start", now)
        assert user.hell_week.is_active is False

    def test_start_sets_target_date(self, user, now):
        user.level = 4
        hell_week_transition(user, "start", now)
        assert user.hell_week.is_active is True
        assert user.hell_week.start_date == now
        assert user.hell_week.target_date == now + HELL_WEEK_DURATION

    def test_start_while_active_rejected(self, user, now):
        user.level = 5
        hell_week_transition(user, "start", now)
        with pytest.raises(DomainPreconditionError, match="Already in hell"):
            hell_week_transition(user, "start", now)

    @pytest.mark.parametrize("action, xp_after", [("surrender", 300), ("fail", 500)])
    def test_penalties_keep_level(self, user, now, action, xp_after):
        user.level = 7
        user.platform_xp = 1000
        hell_week_transition(user, "start", now)
        hell_week_transition(user, action, now)
        assert user.platform_xp == xp_after
        assert user.level == 7
        assert user.hell_week.is_active is False

    def test_surrender_floors_at_zero(self, user, now):
        user.level = 4
        user.platform_xp = 200
        hell_week_transition(user, "start", now)
        hell_week_transition(user, "surrender", now)
        assert user.platform_xp == 0

    def test_complete_rewards_and_levels_up(self, user, now):
        user.level = 4
        user.platform_xp = 600
        hell_week_transition(user, "start", now)
        hell_week_transition(user, "complete", now)
        assert user.platform_xp == 1600
        assert user.level == 6

    def test_terminal_action_requires_active(self, user, now):
        with pytest.raises(DomainPreconditionError):
            hell_week_transition(user, "fail", now)

    def test_unknown_action(self, user, now):
        with pytest.raises(ValidationError):
            hell_week_transition(user, "pause", now)
