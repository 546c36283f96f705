"""
tests/test_streaks.py — Unit Tests for Daily Streak Tracking
=============================================================

Covers the pure day-gap state machine (advance, at-risk window, broken
detection) and the StreakTracker service over an in-memory database.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, date, datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from standing.database.models import ActivityType, UserActivity, UserStreak
from standing.engine.events import Signal
from standing.engine.streaks import (
    StreakState,
    advance_streak,
    hours_into_risk,
    is_at_risk,
    is_broken,
    replay_streak,
    utc_day,
)
from standing.services.streak_service import StreakTracker

from conftest import SignalRecorder


def run_async(coro):
    """Run an async coroutine in a new event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


D = date(2026, 3, 4)


def _state(current: int, longest: int | None = None, last: date | None = D) -> StreakState:
    return StreakState(
        user_id="u1",
        current_streak=current,
        longest_streak=current if longest is None else longest,
        last_activity_date=last,
    )


# ---------------------------------------------------------------------------
# advance_streak
# ---------------------------------------------------------------------------
class TestAdvanceStreak:
    def test_first_activity_starts_at_one(self):
        update = advance_streak(StreakState(user_id="u1"), D)
        assert update.changed
        assert update.state.current_streak == 1
        assert update.state.longest_streak == 1
        assert update.state.last_activity_date == D
        assert update.milestone_reached is None

    def test_same_day_is_noop(self):
        state = _state(4)
        update = advance_streak(state, D)
        assert not update.changed
        assert update.state == state
        assert update.milestone_reached is None

    def test_next_day_increments_and_raises_longest(self):
        update = advance_streak(_state(4), D + timedelta(days=1))
        assert update.state.current_streak == 5
        assert update.state.longest_streak == 5

    def test_gap_resets_current_but_keeps_longest(self):
        update = advance_streak(_state(9), D + timedelta(days=3))
        assert update.state.current_streak == 1
        assert update.state.longest_streak == 9

    def test_late_event_before_last_day_is_noop(self):
        update = advance_streak(_state(4), D - timedelta(days=2))
        assert not update.changed
        assert update.state.current_streak == 4

    def test_milestone_reported_on_exact_landing(self):
        update = advance_streak(_state(6), D + timedelta(days=1))
        assert update.milestone_reached == 7

    def test_no_milestone_between_rungs(self):
        update = advance_streak(_state(7), D + timedelta(days=1))
        assert update.milestone_reached is None

    @pytest.mark.parametrize("days", [3, 7, 14, 30])
    def test_consecutive_days_reach_length(self, days):
        state = replay_streak([D + timedelta(days=i) for i in range(days)])
        assert state.current_streak == days
        assert state.longest_streak == days

    def test_longest_never_decreases_through_gaps(self):
        days = [D + timedelta(days=i) for i in (0, 1, 2, 3, 10, 11, 30)]
        state = StreakState(user_id="u1")
        longest_seen = 0
        for day in days:
            state = advance_streak(state, day).state
            assert state.longest_streak >= longest_seen
            assert state.longest_streak >= state.current_streak
            longest_seen = state.longest_streak
        assert state.current_streak == 1
        assert state.longest_streak == 4


# ---------------------------------------------------------------------------
# Risk / broken windows
# ---------------------------------------------------------------------------
class TestRiskWindow:
    def test_hours_counted_from_end_of_last_day(self):
        now = datetime(2026, 3, 5, 21, 30, tzinfo=UTC)
        assert hours_into_risk(D, now) == pytest.approx(21.5)

    def test_at_risk_from_configured_hour(self):
        state = _state(5)
        assert is_at_risk(state, datetime(2026, 3, 5, 20, 0, tzinfo=UTC))
        assert is_at_risk(state, datetime(2026, 3, 5, 23, 59, tzinfo=UTC))

    def test_not_at_risk_earlier_in_day(self):
        assert not is_at_risk(_state(5), datetime(2026, 3, 5, 19, 59, tzinfo=UTC))

    def test_not_at_risk_once_acted_today(self):
        assert not is_at_risk(_state(5), datetime(2026, 3, 4, 22, 0, tzinfo=UTC))

    def test_not_at_risk_after_full_missed_day(self):
        assert not is_at_risk(_state(5), datetime(2026, 3, 6, 21, 0, tzinfo=UTC))

    def test_zero_streak_never_at_risk(self):
        assert not is_at_risk(_state(0), datetime(2026, 3, 5, 21, 0, tzinfo=UTC))

    def test_custom_hour(self):
        assert is_at_risk(_state(2), datetime(2026, 3, 5, 18, 0, tzinfo=UTC), at_risk_hour=18)

    def test_broken_after_two_day_gap(self):
        assert is_broken(_state(3), D + timedelta(days=2))
        assert not is_broken(_state(3), D + timedelta(days=1))
        assert not is_broken(_state(0), D + timedelta(days=5))

    def test_utc_day_converts_offsets(self):
        late_evening_west = datetime(2026, 3, 4, 22, 0, tzinfo=timezone(timedelta(hours=-5)))
        assert utc_day(late_evening_west) == date(2026, 3, 5)


# ---------------------------------------------------------------------------
# StreakTracker service
# ---------------------------------------------------------------------------
@pytest.fixture
def tracker(db_engine, bus, cfg, clock) -> StreakTracker:
    return StreakTracker(db_engine, bus, cfg, clock)


class TestStreakTracker:
    def test_record_activity_journals_and_starts_streak(self, tracker, db_session):
        state = run_async(tracker.record_activity("u1", ActivityType.POST, "c1", "comment"))

        assert state.current_streak == 1
        rows = db_session.scalars(select(UserActivity)).all()
        assert len(rows) == 1
        assert rows[0].activity_type == "post"
        assert rows[0].entity_id == "c1"

    def test_consecutive_days_publish_milestone_once(self, tracker, bus, clock):
        recorder = SignalRecorder().attach(bus, [Signal.STREAK_MILESTONE])

        async def _inner():
            for _ in range(3):
                await tracker.record_activity("u1", ActivityType.LOGIN)
                await tracker.record_activity("u1", ActivityType.COMMENT)
                clock.advance(days=1)

        run_async(_inner())

        assert recorder.of(Signal.STREAK_MILESTONE) == [{"user_id": "u1", "current_streak": 3}]
        state = run_async(tracker.get_streak("u1"))
        assert state.current_streak == 3
        assert state.longest_streak == 3

    def test_get_streak_unknown_user(self, tracker):
        assert run_async(tracker.get_streak("nobody")) is None
        assert run_async(tracker.is_at_risk("nobody")) is False

    def test_at_risk_and_lapsed_lists(self, tracker, db_session, clock):
        today = clock().date()
        db_session.add_all([
            UserStreak(user_id="yesterday", current_streak=4, longest_streak=4,
                       last_activity_date=today - timedelta(days=1)),
            UserStreak(user_id="lapsed", current_streak=9, longest_streak=9,
                       last_activity_date=today - timedelta(days=3)),
            UserStreak(user_id="today", current_streak=2, longest_streak=2,
                       last_activity_date=today),
        ])
        db_session.commit()

        at_risk = run_async(tracker.get_at_risk_streaks())
        lapsed = run_async(tracker.get_lapsed_streaks())
        assert [s.user_id for s in at_risk] == ["yesterday"]
        assert [s.user_id for s in lapsed] == ["lapsed"]

        clock.set(clock().replace(hour=21))
        assert run_async(tracker.is_at_risk("yesterday")) is True
        assert run_async(tracker.is_at_risk("today")) is False

    def test_reset_streak_only_when_broken(self, tracker, db_session, clock):
        today = clock().date()
        db_session.add_all([
            UserStreak(user_id="lapsed", current_streak=9, longest_streak=12,
                       last_activity_date=today - timedelta(days=3)),
            UserStreak(user_id="fine", current_streak=2, longest_streak=2,
                       last_activity_date=today - timedelta(days=1)),
        ])
        db_session.commit()

        assert run_async(tracker.reset_streak("lapsed")) == 9
        assert run_async(tracker.reset_streak("lapsed")) is None
        assert run_async(tracker.reset_streak("fine")) is None

        state = run_async(tracker.get_streak("lapsed"))
        assert state.current_streak == 0
        assert state.longest_streak == 12

    def test_recently_active_users(self, tracker, clock):
        async def _inner():
            await tracker.record_activity("old", ActivityType.LOGIN)
            clock.advance(hours=2)
            await tracker.record_activity("new", ActivityType.LOGIN)
            return await tracker.get_recently_active_user_ids(timedelta(minutes=60))

        assert run_async(_inner()) == ["new"]

    def test_overview_and_top(self, tracker, db_session, clock):
        today = clock().date()
        db_session.add_all([
            UserStreak(user_id="a", current_streak=8, longest_streak=8, last_activity_date=today),
            UserStreak(user_id="b", current_streak=3, longest_streak=20,
                       last_activity_date=today - timedelta(days=1)),
            UserStreak(user_id="c", current_streak=0, longest_streak=5,
                       last_activity_date=today - timedelta(days=9)),
        ])
        db_session.commit()

        overview = run_async(tracker.get_streak_overview())
        assert overview["active_streaks"] == 2
        assert overview["at_risk"] == 1
        assert overview["milestones"][3] == 2
        assert overview["milestones"][7] == 1
        assert overview["milestones"][14] == 0

        top = run_async(tracker.get_top_streaks(limit=2))
        assert [s.user_id for s in top["current"]] == ["a", "b"]
        assert [s.user_id for s in top["longest"]] == ["b", "a"]
