"""
standing.services.streak_service — Streak Tracker
==================================================

Appends qualifying actions to the activity journal and keeps each user's
daily streak row current.  Streak rows are created lazily on a user's
first activity.

The milestone signal is published only after the new streak is committed,
so the reputation bonus and badge checks that react to it read the
updated row.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from standing.config import StandingConfig
from standing.constants import STREAK_MILESTONES
from standing.database.engine import get_session, run_db
from standing.database.models import ActivityType, UserActivity, UserStreak, utcnow
from standing.engine.events import Signal
from standing.engine.streaks import (
    StreakState,
    StreakUpdate,
    advance_streak,
    is_at_risk,
    is_broken,
    utc_day,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine
    from sqlalchemy.orm import Session

    from standing.services.event_bus import EventBus

logger = logging.getLogger(__name__)


def _snapshot(row: UserStreak) -> StreakState:
    return StreakState(
        user_id=row.user_id,
        current_streak=row.current_streak,
        longest_streak=row.longest_streak,
        last_activity_date=row.last_activity_date,
    )


def get_or_create_streak(session: Session, user_id: str) -> UserStreak:
    """Fetch or insert the streak row for *user_id*."""
    row = session.get(UserStreak, user_id, with_for_update=True)
    if row is None:
        row = UserStreak(user_id=user_id, current_streak=0, longest_streak=0)
        session.add(row)
        session.flush()
    return row


class StreakTracker:
    """Daily activity streaks, one row per user."""

    def __init__(
        self,
        engine: Engine,
        bus: EventBus,
        config: StandingConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.engine = engine
        self.bus = bus
        self.config = config or StandingConfig.defaults()
        self.clock = clock

    def today(self) -> date:
        return utc_day(self.clock())

    # ------------------------------------------------------------------
    # Sync DB helpers (run through run_db)
    # ------------------------------------------------------------------
    def _append_activity(
        self,
        user_id: str,
        activity_type: ActivityType,
        entity_id: str | None,
        entity_type: str | None,
    ) -> None:
        with get_session(self.engine) as session:
            session.add(UserActivity(
                user_id=user_id,
                activity_type=ActivityType(activity_type).value,
                entity_id=entity_id,
                entity_type=entity_type,
                created_at=self.clock(),
            ))

    def _advance_once(self, user_id: str, today: date) -> StreakUpdate:
        with get_session(self.engine) as session:
            row = get_or_create_streak(session, user_id)
            update = advance_streak(_snapshot(row), today)
            if update.changed:
                row.current_streak = update.state.current_streak
                row.longest_streak = update.state.longest_streak
                row.last_activity_date = update.state.last_activity_date
            return update

    def _advance(self, user_id: str, today: date) -> StreakUpdate:
        try:
            return self._advance_once(user_id, today)
        except IntegrityError:
            # Two first activities raced on the insert; the loser re-reads
            # the winner's row and applies its update on top.
            logger.warning("Concurrent streak insert for user %s; retrying", user_id)
            return self._advance_once(user_id, today)

    def _load(self, user_id: str) -> StreakState | None:
        with get_session(self.engine) as session:
            row = session.get(UserStreak, user_id)
            return _snapshot(row) if row else None

    def _load_by_last_day(self, *, on: date | None = None, before: date | None = None) -> list[StreakState]:
        with get_session(self.engine) as session:
            stmt = select(UserStreak).where(UserStreak.current_streak > 0)
            if on is not None:
                stmt = stmt.where(UserStreak.last_activity_date == on)
            if before is not None:
                stmt = stmt.where(UserStreak.last_activity_date < before)
            rows = session.scalars(stmt.order_by(UserStreak.user_id)).all()
            return [_snapshot(r) for r in rows]

    def _reset(self, user_id: str, today: date) -> int | None:
        with get_session(self.engine) as session:
            row = session.get(UserStreak, user_id, with_for_update=True)
            if row is None or not is_broken(_snapshot(row), today):
                return None
            previous = row.current_streak
            row.current_streak = 0
            return previous

    def _active_user_ids(self, since: datetime) -> list[str]:
        with get_session(self.engine) as session:
            return list(session.scalars(
                select(UserActivity.user_id)
                .where(UserActivity.created_at >= since)
                .distinct()
                .order_by(UserActivity.user_id)
            ).all())

    def _overview(self, yesterday: date) -> dict:
        with get_session(self.engine) as session:
            active = session.scalar(
                select(func.count()).select_from(UserStreak)
                .where(UserStreak.current_streak > 0)
            ) or 0
            at_risk = session.scalar(
                select(func.count()).select_from(UserStreak).where(
                    UserStreak.current_streak > 0,
                    UserStreak.last_activity_date == yesterday,
                )
            ) or 0
            milestones = {
                m: session.scalar(
                    select(func.count()).select_from(UserStreak)
                    .where(UserStreak.current_streak >= m)
                ) or 0
                for m in STREAK_MILESTONES
            }
        return {"active_streaks": active, "at_risk": at_risk, "milestones": milestones}

    def _top(self, limit: int) -> dict[str, list[StreakState]]:
        with get_session(self.engine) as session:
            current = session.scalars(
                select(UserStreak).where(UserStreak.current_streak > 0)
                .order_by(UserStreak.current_streak.desc(), UserStreak.user_id)
                .limit(limit)
            ).all()
            longest = session.scalars(
                select(UserStreak).where(UserStreak.longest_streak > 0)
                .order_by(UserStreak.longest_streak.desc(), UserStreak.user_id)
                .limit(limit)
            ).all()
            return {
                "current": [_snapshot(r) for r in current],
                "longest": [_snapshot(r) for r in longest],
            }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def record_activity(
        self,
        user_id: str,
        activity_type: ActivityType,
        entity_id: str | None = None,
        entity_type: str | None = None,
    ) -> StreakState:
        """Journal one qualifying action, then advance the user's streak."""
        try:
            await run_db(self._append_activity, user_id, activity_type, entity_id, entity_type)
        except Exception:
            logger.exception("Failed to record %s activity for user %s", activity_type, user_id)
            raise
        return await self.update_streak(user_id)

    async def update_streak(self, user_id: str) -> StreakState:
        """Count today for *user_id* and publish a milestone if one was hit."""
        try:
            update = await run_db(self._advance, user_id, self.today())
        except Exception:
            logger.exception("Failed to update streak for user %s", user_id)
            raise

        if update.milestone_reached is not None:
            logger.info(
                "User %s reached a %d-day streak", user_id, update.milestone_reached,
            )
            await self.bus.publish(Signal.STREAK_MILESTONE, {
                "user_id": user_id,
                "current_streak": update.state.current_streak,
            })
        return update.state

    async def get_streak(self, user_id: str) -> StreakState | None:
        return await run_db(self._load, user_id)

    async def is_at_risk(self, user_id: str) -> bool:
        state = await self.get_streak(user_id)
        if state is None:
            return False
        return is_at_risk(state, self.clock(), self.config.at_risk_hour)

    async def get_at_risk_streaks(self) -> list[StreakState]:
        """Live streaks whose last activity was exactly yesterday."""
        yesterday = self.today() - timedelta(days=1)
        return await run_db(self._load_by_last_day, on=yesterday)

    async def get_lapsed_streaks(self) -> list[StreakState]:
        """Live streaks with a full missed day since the last activity."""
        cutoff = self.today() - timedelta(days=1)
        return await run_db(self._load_by_last_day, before=cutoff)

    async def reset_streak(self, user_id: str) -> int | None:
        """Zero a lapsed streak.  Returns the previous length, or None when
        the streak was not broken (e.g. the user acted since it was listed)."""
        return await run_db(self._reset, user_id, self.today())

    async def get_recently_active_user_ids(self, window: timedelta) -> list[str]:
        """Users with at least one journal row in the trailing *window*."""
        return await run_db(self._active_user_ids, self.clock() - window)

    async def get_streak_overview(self) -> dict:
        """Counts for admin views: live streaks, at-risk streaks, and how many
        live streaks sit at or above each milestone."""
        return await run_db(self._overview, self.today() - timedelta(days=1))

    async def get_top_streaks(self, limit: int = 10) -> dict[str, list[StreakState]]:
        return await run_db(self._top, limit)
