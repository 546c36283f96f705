"""
standing.services.reputation_service — Reputation Ledger
=========================================================

Per-user lifetime and rolling weekly points.

* Activity awards and streak bonuses go through the same path, so both
  publish ``reputation.changed`` and can cross a milestone.
* At most one ``reputation.milestone`` is published per award, for the
  highest milestone crossed.
* The weekly decay sweep isolates each user: a failure is logged and
  tallied and the sweep moves on.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from standing.constants import (
    ACTIVITY_POINTS,
    DECAY_LOOKBACK_DAYS,
    MIN_WEEKLY_ACTIVITY_TO_PAUSE_REDUCTION,
    REDUCTION_TIERS,
    WEEKLY_REDUCTION_PERCENTAGE,
)
from standing.database.engine import as_utc, get_session, run_db
from standing.database.models import ActivityType, UserActivity, UserReputation, utcnow
from standing.engine.events import Signal
from standing.engine.reputation import (
    ReputationState,
    compute_decay,
    highest_crossed_milestone,
    points_for,
    streak_bonus,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine
    from sqlalchemy.orm import Session

    from standing.services.event_bus import EventBus

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AwardResult:
    old_total: int
    state: ReputationState


@dataclass
class DecaySummary:
    """Tally of one weekly decay run."""

    processed: int = 0
    reduced: int = 0
    skipped: int = 0
    failed: int = 0
    total_points_reduced: int = 0
    duration_ms: int = 0


@dataclass(frozen=True, slots=True)
class ReputationTrends:
    total_points: int
    weekly_points: int
    weekly_change: int
    last_updated: datetime


def _snapshot(row: UserReputation) -> ReputationState:
    return ReputationState(
        user_id=row.user_id,
        total_points=row.total_points,
        weekly_points=row.weekly_points,
        weekly_points_last_reset=as_utc(row.weekly_points_last_reset),
        updated_at=as_utc(row.updated_at),
    )


def get_or_create_reputation(session: Session, user_id: str) -> UserReputation:
    """Fetch (locked) or insert the reputation row for *user_id*."""
    row = session.get(UserReputation, user_id, with_for_update=True)
    if row is None:
        row = UserReputation(user_id=user_id, total_points=0, weekly_points=0)
        session.add(row)
        session.flush()
    return row


def count_recent_activity(session: Session, user_id: str, since: datetime) -> int:
    return session.scalar(
        select(func.count()).select_from(UserActivity).where(
            UserActivity.user_id == user_id,
            UserActivity.created_at >= since,
        )
    ) or 0


class ReputationLedger:
    """Lifetime + weekly reputation points with weekly decay."""

    def __init__(
        self,
        engine: Engine,
        bus: EventBus,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.engine = engine
        self.bus = bus
        self.clock = clock

    # ------------------------------------------------------------------
    # Sync DB helpers (run through run_db)
    # ------------------------------------------------------------------
    def _add_points_once(self, user_id: str, points: int) -> AwardResult:
        with get_session(self.engine) as session:
            row = get_or_create_reputation(session, user_id)
            old_total = row.total_points
            row.total_points = max(0, row.total_points + points)
            row.weekly_points = max(0, row.weekly_points + points)
            row.updated_at = self.clock()
            return AwardResult(old_total=old_total, state=_snapshot(row))

    def _add_points(self, user_id: str, points: int) -> AwardResult:
        try:
            return self._add_points_once(user_id, points)
        except IntegrityError:
            logger.warning("Concurrent reputation insert for user %s; retrying", user_id)
            return self._add_points_once(user_id, points)

    def _load(self, user_id: str) -> ReputationState | None:
        with get_session(self.engine) as session:
            row = session.get(UserReputation, user_id)
            return _snapshot(row) if row else None

    def _load_top(self, limit: int) -> list[ReputationState]:
        with get_session(self.engine) as session:
            rows = session.scalars(
                select(UserReputation)
                .order_by(UserReputation.total_points.desc(), UserReputation.user_id)
                .limit(limit)
            ).all()
            return [_snapshot(r) for r in rows]

    def _load_user_ids(self) -> list[str]:
        with get_session(self.engine) as session:
            return list(session.scalars(
                select(UserReputation.user_id).order_by(UserReputation.user_id)
            ).all())

    def _decay_user(self, user_id: str, now: datetime) -> tuple[int, int, int, bool]:
        """Returns ``(old_total, new_total, reduction, skipped)``."""
        since = now - timedelta(days=DECAY_LOOKBACK_DAYS)
        with get_session(self.engine) as session:
            row = session.get(UserReputation, user_id, with_for_update=True)
            if row is None:
                return 0, 0, 0, True
            recent = count_recent_activity(session, user_id, since)
            result = compute_decay(row.total_points, row.weekly_points, recent)
            old_total = row.total_points
            if result.skipped:
                return old_total, old_total, 0, True
            row.total_points = result.new_total
            row.weekly_points = result.new_weekly
            row.weekly_points_last_reset = now
            if result.reduction:
                row.updated_at = now
            return old_total, result.new_total, result.reduction, False

    def _recent_point_sum(self, user_id: str, since: datetime) -> int:
        with get_session(self.engine) as session:
            rows = session.execute(
                select(UserActivity.activity_type, func.count().label("cnt"))
                .where(UserActivity.user_id == user_id, UserActivity.created_at >= since)
                .group_by(UserActivity.activity_type)
            ).all()
        return sum(points_for(row.activity_type) * row.cnt for row in rows)

    # ------------------------------------------------------------------
    # Awards
    # ------------------------------------------------------------------
    async def _award(self, user_id: str, points: int, reason: str) -> ReputationState:
        try:
            result = await run_db(self._add_points, user_id, points)
        except Exception:
            logger.exception("Failed to award %d points to user %s", points, user_id)
            raise

        new_total = result.state.total_points
        await self.bus.publish(Signal.REPUTATION_CHANGED, {
            "user_id": user_id,
            "old_total": result.old_total,
            "new_total": new_total,
            "change": points,
            "reason": reason,
        })

        milestone = highest_crossed_milestone(result.old_total, new_total)
        if milestone is not None:
            logger.info("User %s reached %d reputation", user_id, milestone)
            await self.bus.publish(Signal.REPUTATION_MILESTONE, {
                "user_id": user_id,
                "reputation": milestone,
            })
        return result.state

    async def award_for_activity(
        self, user_id: str, activity_type: ActivityType,
    ) -> ReputationState:
        points = points_for(activity_type)
        return await self._award(user_id, points, f"{ActivityType(activity_type).value} activity")

    async def award_streak_bonus(self, payload: dict[str, Any]) -> ReputationState | None:
        """``streak.milestone`` handler.  Applies the bonus of the highest
        streak milestone not above the payload's streak length."""
        user_id = str(payload["user_id"])
        current_streak = int(payload["current_streak"])
        bonus = streak_bonus(current_streak)
        if bonus <= 0:
            return None
        return await self._award(user_id, bonus, f"{current_streak}-day streak bonus")

    # ------------------------------------------------------------------
    # Weekly decay
    # ------------------------------------------------------------------
    async def apply_weekly_decay(self) -> DecaySummary:
        """Trim weekly points from every reputation record.

        Raises only when the candidate list cannot be read; per-user errors
        are logged and counted in ``failed``.
        """
        start = time.monotonic()
        now = self.clock()
        summary = DecaySummary()

        user_ids = await run_db(self._load_user_ids)
        logger.info("Weekly decay: %d reputation records to check", len(user_ids))

        for user_id in user_ids:
            try:
                old_total, new_total, reduction, skipped = await run_db(
                    self._decay_user, user_id, now,
                )
            except Exception:
                summary.failed += 1
                logger.exception("Weekly decay failed for user %s", user_id)
                continue

            summary.processed += 1
            if skipped:
                summary.skipped += 1
                continue
            if reduction <= 0:
                continue

            summary.reduced += 1
            summary.total_points_reduced += reduction
            await self.bus.publish(Signal.REPUTATION_CHANGED, {
                "user_id": user_id,
                "old_total": old_total,
                "new_total": new_total,
                "change": new_total - old_total,
                "reason": f"weekly decay ({reduction} points)",
            })

        summary.duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Weekly decay done in %dms: processed=%d reduced=%d skipped=%d "
            "failed=%d points_reduced=%d",
            summary.duration_ms, summary.processed, summary.reduced,
            summary.skipped, summary.failed, summary.total_points_reduced,
        )
        return summary

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    async def get_reputation(self, user_id: str) -> ReputationState | None:
        return await run_db(self._load, user_id)

    async def get_top_by_reputation(self, limit: int = 10) -> list[ReputationState]:
        return await run_db(self._load_top, limit)

    async def get_reputation_trends(self, user_id: str) -> ReputationTrends:
        """Current totals plus points implied by the trailing week's activity."""
        now = self.clock()
        state = await self.get_reputation(user_id)
        if state is None:
            return ReputationTrends(0, 0, 0, now)
        change = await run_db(
            self._recent_point_sum, user_id, now - timedelta(days=DECAY_LOOKBACK_DAYS),
        )
        return ReputationTrends(
            total_points=state.total_points,
            weekly_points=state.weekly_points,
            weekly_change=change,
            last_updated=state.updated_at or now,
        )

    @staticmethod
    def get_activity_point_values() -> dict[str, Any]:
        """Point table and decay rules, for display."""
        values: dict[str, Any] = {a.value: p for a, p in ACTIVITY_POINTS.items()}
        values["weekly_decay_percentage"] = WEEKLY_REDUCTION_PERCENTAGE
        values["min_weekly_activity_to_pause_reduction"] = MIN_WEEKLY_ACTIVITY_TO_PAUSE_REDUCTION
        values["reduction_tiers"] = {
            tier.name.lower(): {
                "max_points": tier.max_points,
                "max_reduction": tier.max_reduction,
            }
            for tier in REDUCTION_TIERS
        }
        return values
