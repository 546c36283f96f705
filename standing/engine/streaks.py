"""
standing.engine.streaks — Daily Streak State Machine
=====================================================

Pure calculation, no database I/O.  The service layer loads a
:class:`StreakState`, asks :func:`advance_streak` what the next state is,
then persists it and publishes any milestone.

All dates are UTC calendar days.  Time-of-day only matters for the
at-risk window.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, date, datetime, time, timedelta

from standing.constants import STREAK_MILESTONES

DEFAULT_AT_RISK_HOUR = 20


@dataclass(frozen=True, slots=True)
class StreakState:
    """Detached snapshot of a user's streak row."""

    user_id: str
    current_streak: int = 0
    longest_streak: int = 0
    last_activity_date: date | None = None


@dataclass(frozen=True, slots=True)
class StreakUpdate:
    """Result of applying one day's activity to a :class:`StreakState`.

    ``changed`` is False when the activity landed on a day already counted.
    ``milestone_reached`` holds the milestone value when the new current
    streak lands exactly on one, else None.
    """

    previous: StreakState
    state: StreakState
    changed: bool
    milestone_reached: int | None = None


def utc_day(moment: datetime) -> date:
    """Calendar day of *moment* in UTC.  Naive datetimes are taken as UTC."""
    if moment.tzinfo is None:
        return moment.date()
    return moment.astimezone(UTC).date()


def advance_streak(state: StreakState, today: date) -> StreakUpdate:
    """Apply an activity on *today* to *state*.

    * no prior day  → current = longest = 1
    * same day      → unchanged
    * next day      → current + 1, longest raised if exceeded
    * any later day → current resets to 1, longest untouched
    """
    last = state.last_activity_date

    if last is None:
        new_state = replace(
            state, current_streak=1,
            longest_streak=max(state.longest_streak, 1),
            last_activity_date=today,
        )
    else:
        gap_days = (today - last).days
        if gap_days <= 0:
            # Same day, or a late event stamped before the last counted day.
            return StreakUpdate(previous=state, state=state, changed=False)
        if gap_days == 1:
            current = state.current_streak + 1
            new_state = replace(
                state, current_streak=current,
                longest_streak=max(state.longest_streak, current),
                last_activity_date=today,
            )
        else:
            new_state = replace(
                state, current_streak=1,
                longest_streak=max(state.longest_streak, 1),
                last_activity_date=today,
            )

    milestone = None
    if (
        new_state.current_streak in STREAK_MILESTONES
        and new_state.current_streak > state.current_streak
    ):
        milestone = new_state.current_streak

    return StreakUpdate(
        previous=state, state=new_state, changed=True, milestone_reached=milestone,
    )


def hours_into_risk(last_activity_date: date, now: datetime) -> float:
    """Hours elapsed since the end of *last_activity_date* (UTC midnight)."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    day_end = datetime.combine(last_activity_date + timedelta(days=1), time.min, tzinfo=UTC)
    return (now - day_end).total_seconds() / 3600


def is_at_risk(
    state: StreakState, now: datetime, at_risk_hour: int = DEFAULT_AT_RISK_HOUR,
) -> bool:
    """A live streak whose owner has not acted today, late in the day.

    True iff ``current_streak > 0`` and ``at_risk_hour <= hours < 24``
    where *hours* is the time since the last active day ended.
    """
    if state.current_streak <= 0 or state.last_activity_date is None:
        return False
    hours = hours_into_risk(state.last_activity_date, now)
    return at_risk_hour <= hours < 24


def is_broken(state: StreakState, today: date) -> bool:
    """A live streak with at least one full missed day since the last activity."""
    if state.current_streak <= 0 or state.last_activity_date is None:
        return False
    return (today - state.last_activity_date).days >= 2


def replay_streak(days: list[date]) -> StreakState:
    """Fold a sequence of activity days through :func:`advance_streak`,
    starting from an empty state."""
    state = StreakState(user_id="")
    for day in sorted(days):
        state = advance_streak(state, day).state
    return state
