"""
standing.services.badge_service — Badge Engine
================================================

Evaluates the badge catalogue against a user's current state and awards
badges idempotently.

* A full check covers every active badge except the top-percent kind,
  which only the weekly percentile sweep may award.  Full checks are rate
  limited per user (``badge_check_cooldown_seconds``); forced checks skip
  the limit.
* Narrow checks are triggered by activity hooks.  They log failures and
  return an empty list so the originating action is never failed by a
  badge problem.
* Awarding skips existing (user, badge) rows; a unique-constraint race is
  logged as a warning and treated as "already awarded".
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from standing.config import StandingConfig
from standing.database.engine import as_utc, get_session, run_db
from standing.database.models import (
    ActivityType,
    Badge,
    BadgeRequirement,
    Comment,
    CommentVote,
    LeaderboardCategory,
    LeaderboardTimeframe,
    UserActivity,
    UserBadge,
    UserStreak,
    VoteType,
    utcnow,
)
from standing.engine.badges import (
    ACTIVITY_REQUIREMENTS,
    RECEIVED_REQUIREMENTS,
    STREAK_REQUIREMENTS,
    BadgeContext,
    badge_progress,
    is_eligible,
)
from standing.engine.events import Signal
from standing.engine.leaderboard import percentile_target_count
from standing.errors import NotFoundError

if TYPE_CHECKING:
    from sqlalchemy import Engine
    from sqlalchemy.orm import Session

    from standing.services.event_bus import EventBus
    from standing.services.leaderboard_service import LeaderboardEngine

logger = logging.getLogger(__name__)

PERCENTILE_BOARD = (LeaderboardCategory.REPUTATION, LeaderboardTimeframe.ALL_TIME)
RECENT_BADGES_LIMIT = 5


@dataclass(frozen=True, slots=True)
class BadgeInfo:
    id: int
    name: str
    description: str
    category: str
    requirement: str
    threshold_value: int
    is_active: bool


@dataclass(frozen=True, slots=True)
class AwardedBadge:
    user_id: str
    badge: BadgeInfo
    earned_at: datetime
    is_displayed: bool


@dataclass(frozen=True, slots=True)
class AvailableBadge:
    badge: BadgeInfo
    is_achieved: bool
    progress: int
    current_value: int


@dataclass
class PercentileSummary:
    badges: int = 0
    candidates: int = 0
    awarded: int = 0
    failed: int = 0
    duration_ms: int = 0


def _badge_info(badge: Badge) -> BadgeInfo:
    return BadgeInfo(
        id=badge.id,
        name=badge.name,
        description=badge.description or "",
        category=badge.category,
        requirement=badge.requirement,
        threshold_value=badge.threshold_value,
        is_active=badge.is_active,
    )


def _awarded(user_badge: UserBadge) -> AwardedBadge:
    return AwardedBadge(
        user_id=user_badge.user_id,
        badge=_badge_info(user_badge.badge),
        earned_at=as_utc(user_badge.earned_at),
        is_displayed=user_badge.is_displayed,
    )


# ---------------------------------------------------------------------------
# Context queries
# ---------------------------------------------------------------------------
def _activity_counts(session: Session, user_id: str) -> dict[str, int]:
    rows = session.execute(
        select(UserActivity.activity_type, func.count().label("cnt"))
        .where(UserActivity.user_id == user_id)
        .group_by(UserActivity.activity_type)
    ).all()
    return {row.activity_type: row.cnt for row in rows}


def _upvotes_received(session: Session, user_id: str) -> int:
    return session.scalar(
        select(func.count(CommentVote.id))
        .join(Comment, CommentVote.comment_id == Comment.id)
        .where(Comment.user_id == user_id, CommentVote.vote_type == VoteType.UPVOTE.value)
    ) or 0


def _comments_received(session: Session, user_id: str) -> int:
    own_ids = select(Comment.id).where(Comment.user_id == user_id)
    return session.scalar(
        select(func.count()).select_from(Comment).where(Comment.parent_id.in_(own_ids))
    ) or 0


def _best_upvotes(session: Session, user_id: str, posts_only: bool) -> int:
    stmt = select(func.max(Comment.upvotes)).where(Comment.user_id == user_id)
    if posts_only:
        stmt = stmt.where(Comment.parent_id.is_(None))
    return session.scalar(stmt) or 0


def build_context(
    session: Session, user_id: str, target_comment_id: str | None = None,
) -> BadgeContext:
    """Read everything the non-percentile handlers need for *user_id*."""
    streak = session.get(UserStreak, user_id)
    target_upvotes = None
    if target_comment_id is not None:
        target = session.get(Comment, target_comment_id)
        if target is None:
            logger.warning("Comment %s not found for quality badge check", target_comment_id)
            target_upvotes = 0
        else:
            target_upvotes = target.upvotes
    return BadgeContext(
        current_streak=streak.current_streak if streak else 0,
        longest_streak=streak.longest_streak if streak else 0,
        activity_counts=_activity_counts(session, user_id),
        upvotes_received=_upvotes_received(session, user_id),
        comments_received=_comments_received(session, user_id),
        best_comment_upvotes=_best_upvotes(session, user_id, posts_only=False),
        best_post_upvotes=_best_upvotes(session, user_id, posts_only=True),
        target_comment_upvotes=target_upvotes,
    )


class BadgeEngine:
    """Badge eligibility, awarding and badge queries."""

    def __init__(
        self,
        engine: Engine,
        bus: EventBus,
        leaderboards: LeaderboardEngine,
        config: StandingConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.engine = engine
        self.bus = bus
        self.leaderboards = leaderboards
        self.config = config or StandingConfig.defaults()
        self.clock = clock
        self._last_full_check: dict[str, datetime] = {}
        self._checks_in_progress: set[str] = set()

    # ------------------------------------------------------------------
    # Rate limiting for full checks
    # ------------------------------------------------------------------
    def is_rate_limited(self, user_id: str) -> bool:
        if user_id in self._checks_in_progress:
            return True
        last = self._last_full_check.get(user_id)
        if last is None:
            return False
        cooldown = timedelta(seconds=self.config.badge_check_cooldown_seconds)
        return self.clock() - last < cooldown

    def _prune_cooldowns(self, now: datetime) -> None:
        """Forget users whose cooldown has already expired."""
        cutoff = now - timedelta(seconds=self.config.badge_check_cooldown_seconds)
        expired = [uid for uid, last in self._last_full_check.items() if last <= cutoff]
        for user_id in expired:
            del self._last_full_check[user_id]

    # ------------------------------------------------------------------
    # Sync DB helpers (run through run_db)
    # ------------------------------------------------------------------
    def _load_badges(
        self,
        requirements: Iterable[BadgeRequirement] | None = None,
        exclude: Iterable[BadgeRequirement] = (),
    ) -> list[BadgeInfo]:
        stmt = select(Badge).where(Badge.is_active.is_(True))
        if requirements is not None:
            stmt = stmt.where(Badge.requirement.in_([r.value for r in requirements]))
        excluded = [r.value for r in exclude]
        if excluded:
            stmt = stmt.where(Badge.requirement.not_in(excluded))
        stmt = stmt.order_by(Badge.category, Badge.threshold_value, Badge.id)
        with get_session(self.engine) as session:
            return [_badge_info(b) for b in session.scalars(stmt).all()]

    def _load_badge(self, badge_id: int) -> BadgeInfo | None:
        with get_session(self.engine) as session:
            badge = session.get(Badge, badge_id)
            return _badge_info(badge) if badge else None

    def _owned_badge_ids(self, user_id: str) -> set[int]:
        with get_session(self.engine) as session:
            return set(session.scalars(
                select(UserBadge.badge_id).where(UserBadge.user_id == user_id)
            ).all())

    def _context(self, user_id: str, target_comment_id: str | None = None) -> BadgeContext:
        with get_session(self.engine) as session:
            return build_context(session, user_id, target_comment_id)

    def _insert_award(self, user_id: str, badge_id: int) -> AwardedBadge | None:
        try:
            with get_session(self.engine) as session:
                existing = session.scalar(
                    select(UserBadge).where(
                        UserBadge.user_id == user_id, UserBadge.badge_id == badge_id,
                    )
                )
                if existing is not None:
                    return None
                user_badge = UserBadge(
                    user_id=user_id, badge_id=badge_id,
                    earned_at=self.clock(), is_displayed=False,
                )
                session.add(user_badge)
                session.flush()
                return _awarded(user_badge)
        except IntegrityError:
            logger.warning(
                "Badge %d already awarded to user %s by a concurrent check", badge_id, user_id,
            )
            return None

    def _user_badges(self, user_id: str) -> list[AwardedBadge]:
        with get_session(self.engine) as session:
            rows = session.scalars(
                select(UserBadge).where(UserBadge.user_id == user_id)
                .order_by(UserBadge.earned_at.desc(), UserBadge.id.desc())
            ).all()
            return [_awarded(ub) for ub in rows]

    def _set_display(self, user_id: str, badge_id: int, is_displayed: bool) -> AwardedBadge:
        with get_session(self.engine) as session:
            user_badge = session.scalar(
                select(UserBadge).where(
                    UserBadge.user_id == user_id, UserBadge.badge_id == badge_id,
                )
            )
            if user_badge is None:
                raise NotFoundError("UserBadge", f"{user_id}/{badge_id}")
            user_badge.is_displayed = is_displayed
            return _awarded(user_badge)

    # ------------------------------------------------------------------
    # Awarding
    # ------------------------------------------------------------------
    async def award_badge(self, user_id: str, badge: BadgeInfo) -> AwardedBadge | None:
        """Create the award row and publish ``badge.earned``.

        Returns None when the user already holds the badge.
        """
        awarded = await run_db(self._insert_award, user_id, badge.id)
        if awarded is None:
            return None
        logger.info("Badge %r awarded to user %s", badge.name, user_id)
        await self.bus.publish(Signal.BADGE_EARNED, {
            "user_id": user_id,
            "badge_id": badge.id,
            "badge_name": badge.name,
        })
        return awarded

    async def _process(
        self, user_id: str, badges: list[BadgeInfo], ctx: BadgeContext,
    ) -> list[AwardedBadge]:
        if not badges:
            return []
        owned = await run_db(self._owned_badge_ids, user_id)
        awarded: list[AwardedBadge] = []
        for badge in badges:
            if badge.id in owned or not is_eligible(badge, ctx):
                continue
            result = await self.award_badge(user_id, badge)
            if result is not None:
                awarded.append(result)
        return awarded

    async def _check(
        self,
        user_id: str,
        requirements: Iterable[BadgeRequirement],
        target_comment_id: str | None = None,
    ) -> list[AwardedBadge]:
        badges = await run_db(self._load_badges, tuple(requirements))
        if not badges:
            return []
        ctx = await run_db(self._context, user_id, target_comment_id)
        return await self._process(user_id, badges, ctx)

    # ------------------------------------------------------------------
    # Full checks
    # ------------------------------------------------------------------
    async def check_all_user_badges(self, user_id: str) -> list[AwardedBadge]:
        """Evaluate every active badge the user lacks, except top-percent."""
        if self.is_rate_limited(user_id):
            logger.debug("Full badge check for user %s skipped (rate limited)", user_id)
            return []
        self._checks_in_progress.add(user_id)
        try:
            badges = await run_db(
                self._load_badges, None, (BadgeRequirement.TOP_PERCENT_WEEKLY,),
            )
            ctx = await run_db(self._context, user_id)
            return await self._process(user_id, badges, ctx)
        except Exception:
            logger.exception("Full badge check failed for user %s", user_id)
            raise
        finally:
            self._checks_in_progress.discard(user_id)
            now = self.clock()
            self._prune_cooldowns(now)
            self._last_full_check[user_id] = now

    async def force_check_all_user_badges(self, user_id: str) -> list[AwardedBadge]:
        self._last_full_check.pop(user_id, None)
        return await self.check_all_user_badges(user_id)

    # ------------------------------------------------------------------
    # Narrow checks (hook-triggered)
    # ------------------------------------------------------------------
    async def check_activity_count_badges(
        self, user_id: str, activity_type: ActivityType,
    ) -> list[AwardedBadge]:
        requirements = ACTIVITY_REQUIREMENTS.get(ActivityType(activity_type), ())
        if not requirements:
            return []
        try:
            return await self._check(user_id, requirements)
        except Exception:
            logger.exception("%s count badge check failed for user %s", activity_type, user_id)
            return []

    async def check_streak_badges(self, user_id: str) -> list[AwardedBadge]:
        try:
            return await self._check(user_id, STREAK_REQUIREMENTS)
        except Exception:
            logger.exception("Streak badge check failed for user %s", user_id)
            return []

    async def check_received_interaction_badges(self, user_id: str) -> list[AwardedBadge]:
        try:
            return await self._check(user_id, RECEIVED_REQUIREMENTS)
        except Exception:
            logger.exception("Received interaction badge check failed for user %s", user_id)
            return []

    async def check_post_quality_badges(self, user_id: str, post_id: str) -> list[AwardedBadge]:
        try:
            return await self._check(user_id, (BadgeRequirement.POST_MIN_UPVOTES,))
        except Exception:
            logger.exception(
                "Post quality badge check failed for user %s, post %s", user_id, post_id,
            )
            return []

    async def check_comment_quality_badges(
        self, user_id: str, comment_id: str,
    ) -> list[AwardedBadge]:
        try:
            return await self._check(
                user_id, (BadgeRequirement.COMMENT_MIN_UPVOTES,), target_comment_id=comment_id,
            )
        except Exception:
            logger.exception(
                "Comment quality badge check failed for user %s, comment %s",
                user_id, comment_id,
            )
            return []

    # ------------------------------------------------------------------
    # Weekly percentile sweep
    # ------------------------------------------------------------------
    async def check_weekly_percent_badges(self) -> PercentileSummary:
        """Award each active top-percent badge to the top ``ceil(total * pct / 100)``
        users of the lifetime reputation board."""
        start = time.monotonic()
        summary = PercentileSummary()
        badges = await run_db(self._load_badges, (BadgeRequirement.TOP_PERCENT_WEEKLY,))
        total = await self.leaderboards.count_ranked(*PERCENTILE_BOARD)

        for badge in badges:
            summary.badges += 1
            target = percentile_target_count(total, badge.threshold_value)
            if target <= 0:
                continue
            top_ids = await self.leaderboards.get_top_user_ids(*PERCENTILE_BOARD, target)
            for rank, user_id in enumerate(top_ids, start=1):
                summary.candidates += 1
                ctx = BadgeContext(
                    leaderboard_rank=rank, leaderboard_total=total, percentile_context=True,
                )
                try:
                    awarded = await self._process(user_id, [badge], ctx)
                except Exception:
                    summary.failed += 1
                    logger.exception(
                        "Percentile badge %r failed for user %s", badge.name, user_id,
                    )
                    continue
                summary.awarded += len(awarded)

        summary.duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Percentile badge sweep done in %dms: badges=%d ranked=%d candidates=%d "
            "awarded=%d failed=%d",
            summary.duration_ms, summary.badges, total, summary.candidates,
            summary.awarded, summary.failed,
        )
        return summary

    # ------------------------------------------------------------------
    # Display + queries
    # ------------------------------------------------------------------
    async def toggle_display(
        self, user_id: str, badge_id: int, is_displayed: bool,
    ) -> AwardedBadge:
        """Show or hide an earned badge on the user's profile.

        Raises
        ------
        NotFoundError
            If the user has not earned *badge_id*.
        """
        return await run_db(self._set_display, user_id, badge_id, is_displayed)

    async def get_user_badges(self, user_id: str) -> list[AwardedBadge]:
        return await run_db(self._user_badges, user_id)

    async def get_available_badges(self, user_id: str) -> list[AvailableBadge]:
        """Every active badge with the user's achievement flag and progress."""
        badges = await run_db(self._load_badges)
        owned = await run_db(self._owned_badge_ids, user_id)
        ctx = await run_db(self._context, user_id)
        position = await self.leaderboards.get_user_position(user_id, *PERCENTILE_BOARD)
        total = await self.leaderboards.count_ranked(*PERCENTILE_BOARD)
        ctx = replace(ctx, leaderboard_rank=position.rank, leaderboard_total=total)

        available = []
        for badge in badges:
            progress, current = badge_progress(badge, ctx)
            achieved = badge.id in owned
            available.append(AvailableBadge(
                badge=badge,
                is_achieved=achieved,
                progress=100 if achieved else progress,
                current_value=current,
            ))
        return available

    async def get_user_badge_summary(self, user_id: str) -> dict[str, Any]:
        badges = await self.get_user_badges(user_id)
        by_category: dict[str, int] = {}
        for awarded in badges:
            by_category[awarded.badge.category] = by_category.get(awarded.badge.category, 0) + 1
        return {
            "total_badges": len(badges),
            "recent_badges": badges[:RECENT_BADGES_LIMIT],
            "badges_by_category": by_category,
        }

    async def award_badge_to_users(
        self, badge_id: int, user_ids: Iterable[str],
    ) -> list[AwardedBadge]:
        """Administrative award, bypassing eligibility.  Users who already
        hold the badge are skipped.

        Raises
        ------
        NotFoundError
            If *badge_id* does not exist.
        """
        badge = await run_db(self._load_badge, badge_id)
        if badge is None:
            raise NotFoundError("Badge", badge_id)
        awarded = []
        for user_id in user_ids:
            result = await self.award_badge(user_id, badge)
            if result is not None:
                awarded.append(result)
        logger.info("Admin award of %r: %d new holders", badge.name, len(awarded))
        return awarded
