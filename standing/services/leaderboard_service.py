"""
standing.services.leaderboard_service — Leaderboard Engine
===========================================================

Recomputes ranked entries for every (category, timeframe) board and
answers leaderboard queries.

Score sources:
    POSTS / COMMENTS / UPVOTES_GIVEN   grouped counts of journal rows
    UPVOTES_RECEIVED                   upvotes joined to the comment owner
    REPUTATION                         weekly (WEEKLY) or lifetime points,
                                       users with lifetime points > 0 only

Every recompute carries each user's old rank into ``previous_rank``.  A
user with an entry but no score this cycle keeps the row with score 0,
rank unchanged and ``previous_rank = rank``.  Only entries with a
positive score are visible to queries, counts and percentile math.
"""

from __future__ import annotations

import itertools
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, select, update

from standing.config import StandingConfig
from standing.constants import DEFAULT_PAGE_SIZE
from standing.database.engine import get_session, run_db
from standing.database.models import (
    ActivityType,
    Comment,
    CommentVote,
    LeaderboardCategory,
    LeaderboardEntry,
    LeaderboardTimeframe,
    UserActivity,
    UserReputation,
    VoteType,
    utcnow,
)
from standing.engine.events import Signal
from standing.engine.leaderboard import (
    RankedEntry,
    date_threshold,
    is_rank_improvement,
    is_significant_change,
    parse_category,
    parse_timeframe,
    rank_scores,
    total_pages,
)
from standing.errors import InvalidLeaderboardError

if TYPE_CHECKING:
    from sqlalchemy import Engine
    from sqlalchemy.orm import Session

    from standing.services.event_bus import EventBus

logger = logging.getLogger(__name__)

CATEGORY_ACTIVITY: dict[LeaderboardCategory, ActivityType] = {
    LeaderboardCategory.POSTS: ActivityType.POST,
    LeaderboardCategory.COMMENTS: ActivityType.COMMENT,
    LeaderboardCategory.UPVOTES_GIVEN: ActivityType.UPVOTE,
}


@dataclass(frozen=True, slots=True)
class LeaderboardRow:
    user_id: str
    category: str
    timeframe: str
    rank: int
    score: int
    previous_rank: int | None


@dataclass(frozen=True, slots=True)
class LeaderboardPage:
    entries: list[LeaderboardRow]
    total: int
    page: int
    page_size: int
    total_pages: int


@dataclass(frozen=True, slots=True)
class LeaderboardPosition:
    rank: int
    score: int


@dataclass
class RecomputeSummary:
    boards: int = 0
    entries: int = 0
    failed: int = 0
    improvements: int = 0
    duration_ms: int = 0


@dataclass
class ChangeSummary:
    users_processed: int = 0
    users_with_changes: int = 0
    notifications: int = 0
    failed: int = 0
    duration_ms: int = 0


@dataclass
class _RecomputeResult:
    entries: int = 0
    improvements: list[RankedEntry] = field(default_factory=list)


def _row(entry: LeaderboardEntry) -> LeaderboardRow:
    return LeaderboardRow(
        user_id=entry.user_id,
        category=entry.category,
        timeframe=entry.timeframe,
        rank=entry.rank,
        score=entry.score,
        previous_rank=entry.previous_rank,
    )


# ---------------------------------------------------------------------------
# Score queries — each returns (user_id, score) pairs ordered by user id
# ---------------------------------------------------------------------------
def activity_scores(
    session: Session, activity: ActivityType, since: datetime | None,
) -> list[tuple[str, int]]:
    stmt = (
        select(UserActivity.user_id, func.count().label("score"))
        .where(UserActivity.activity_type == activity.value)
    )
    if since is not None:
        stmt = stmt.where(UserActivity.created_at >= since)
    stmt = stmt.group_by(UserActivity.user_id).order_by(UserActivity.user_id)
    return [(row.user_id, int(row.score)) for row in session.execute(stmt).all()]


def upvotes_received_scores(session: Session, since: datetime | None) -> list[tuple[str, int]]:
    stmt = (
        select(Comment.user_id, func.count(CommentVote.id).label("score"))
        .join(CommentVote, CommentVote.comment_id == Comment.id)
        .where(CommentVote.vote_type == VoteType.UPVOTE.value)
    )
    if since is not None:
        stmt = stmt.where(CommentVote.created_at >= since)
    stmt = stmt.group_by(Comment.user_id).order_by(Comment.user_id)
    return [(row.user_id, int(row.score)) for row in session.execute(stmt).all()]


def reputation_scores(
    session: Session, timeframe: LeaderboardTimeframe,
) -> list[tuple[str, int]]:
    column = (
        UserReputation.weekly_points
        if timeframe is LeaderboardTimeframe.WEEKLY
        else UserReputation.total_points
    )
    stmt = (
        select(UserReputation.user_id, column.label("score"))
        .where(UserReputation.total_points > 0)
        .order_by(UserReputation.user_id)
    )
    return [(row.user_id, int(row.score)) for row in session.execute(stmt).all()]


def calculate_scores(
    session: Session,
    category: LeaderboardCategory,
    timeframe: LeaderboardTimeframe,
    now: datetime,
) -> list[tuple[str, int]]:
    if category is LeaderboardCategory.REPUTATION:
        return reputation_scores(session, timeframe)
    since = date_threshold(timeframe, now)
    if category is LeaderboardCategory.UPVOTES_RECEIVED:
        return upvotes_received_scores(session, since)
    return activity_scores(session, CATEGORY_ACTIVITY[category], since)


class LeaderboardEngine:
    """Ranked boards per (category, timeframe)."""

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

    # ------------------------------------------------------------------
    # Sync DB helpers (run through run_db)
    # ------------------------------------------------------------------
    def _recompute(
        self,
        category: LeaderboardCategory,
        timeframe: LeaderboardTimeframe,
        now: datetime,
    ) -> _RecomputeResult:
        result = _RecomputeResult()
        with get_session(self.engine) as session:
            existing = {
                e.user_id: e
                for e in session.scalars(
                    select(LeaderboardEntry).where(
                        LeaderboardEntry.category == category.value,
                        LeaderboardEntry.timeframe == timeframe.value,
                    )
                ).all()
            }
            # Zero scores are not eligible for a rank
            scores = [
                (uid, score)
                for uid, score in calculate_scores(session, category, timeframe, now)
                if score > 0
            ]
            ranked = rank_scores(scores, {uid: e.rank for uid, e in existing.items()})

            for entry in ranked:
                row = existing.pop(entry.user_id, None)
                if row is None:
                    session.add(LeaderboardEntry(
                        user_id=entry.user_id,
                        category=category.value,
                        timeframe=timeframe.value,
                        rank=entry.rank,
                        score=entry.score,
                        previous_rank=None,
                    ))
                else:
                    row.previous_rank = row.rank
                    row.rank = entry.rank
                    row.score = entry.score
                    row.updated_at = now
                if is_rank_improvement(entry.previous_rank, entry.rank):
                    result.improvements.append(entry)

            # Dropped out of the score window this cycle
            for row in existing.values():
                row.previous_rank = row.rank
                row.score = 0
                row.updated_at = now

            result.entries = len(ranked)
        return result

    def _page(
        self,
        category: LeaderboardCategory,
        timeframe: LeaderboardTimeframe,
        offset: int,
        limit: int | None,
    ) -> tuple[list[LeaderboardRow], int]:
        visible = (
            LeaderboardEntry.category == category.value,
            LeaderboardEntry.timeframe == timeframe.value,
            LeaderboardEntry.score > 0,
        )
        with get_session(self.engine) as session:
            total = session.scalar(
                select(func.count()).select_from(LeaderboardEntry).where(*visible)
            ) or 0
            stmt = (
                select(LeaderboardEntry).where(*visible)
                .order_by(
                    LeaderboardEntry.score.desc(),
                    LeaderboardEntry.rank.asc(),
                    LeaderboardEntry.user_id.asc(),
                )
                .offset(offset)
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            rows = [_row(e) for e in session.scalars(stmt).all()]
        return rows, total

    def _entries_for_user(self, user_id: str) -> list[LeaderboardRow]:
        with get_session(self.engine) as session:
            rows = session.scalars(
                select(LeaderboardEntry)
                .where(LeaderboardEntry.user_id == user_id, LeaderboardEntry.score > 0)
                .order_by(LeaderboardEntry.category, LeaderboardEntry.timeframe)
            ).all()
            return [_row(e) for e in rows]

    def _entry(
        self, user_id: str, category: LeaderboardCategory, timeframe: LeaderboardTimeframe,
    ) -> LeaderboardRow | None:
        with get_session(self.engine) as session:
            entry = session.scalar(
                select(LeaderboardEntry).where(
                    LeaderboardEntry.user_id == user_id,
                    LeaderboardEntry.category == category.value,
                    LeaderboardEntry.timeframe == timeframe.value,
                )
            )
            return _row(entry) if entry else None

    def _snapshot(self, timeframe: LeaderboardTimeframe) -> int:
        with get_session(self.engine) as session:
            result = session.execute(
                update(LeaderboardEntry)
                .where(LeaderboardEntry.timeframe == timeframe.value)
                .values(previous_rank=LeaderboardEntry.rank)
            )
            return result.rowcount or 0

    def _ranked_user_ids(self) -> list[str]:
        with get_session(self.engine) as session:
            return list(session.scalars(
                select(LeaderboardEntry.user_id)
                .where(LeaderboardEntry.score > 0)
                .distinct()
                .order_by(LeaderboardEntry.user_id)
            ).all())

    # ------------------------------------------------------------------
    # Recomputation
    # ------------------------------------------------------------------
    async def _publish_improvements(
        self,
        category: LeaderboardCategory,
        timeframe: LeaderboardTimeframe,
        improvements: list[RankedEntry],
    ) -> None:
        for entry in improvements:
            await self.bus.publish(Signal.LEADERBOARD_POSITION_CHANGE, {
                "user_id": entry.user_id,
                "new_position": entry.rank,
                "previous_position": entry.previous_rank,
                "category": category.value,
                "timeframe": timeframe.value,
            })

    async def recompute(
        self,
        category: LeaderboardCategory | str,
        timeframe: LeaderboardTimeframe | str,
    ) -> int:
        """Rebuild one board.  Returns the number of scored entries.

        An unknown category or timeframe is logged and skipped.
        """
        try:
            cat, tf = parse_category(category), parse_timeframe(timeframe)
        except InvalidLeaderboardError as exc:
            logger.warning("Skipping leaderboard recompute: %s", exc)
            return 0

        result = await run_db(self._recompute, cat, tf, self.clock())
        await self._publish_improvements(cat, tf, result.improvements)
        logger.debug(
            "Recomputed %s/%s: %d entries, %d improvements",
            cat, tf, result.entries, len(result.improvements),
        )
        return result.entries

    async def recompute_all(self) -> RecomputeSummary:
        """Rebuild every (category, timeframe) board; one failing board does
        not stop the others."""
        start = time.monotonic()
        summary = RecomputeSummary()
        for cat, tf in itertools.product(LeaderboardCategory, LeaderboardTimeframe):
            try:
                result = await run_db(self._recompute, cat, tf, self.clock())
            except Exception:
                summary.failed += 1
                logger.exception("Failed to recompute %s/%s leaderboard", cat, tf)
                continue
            summary.boards += 1
            summary.entries += result.entries
            summary.improvements += len(result.improvements)
            await self._publish_improvements(cat, tf, result.improvements)
        summary.duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Leaderboards recomputed in %dms: boards=%d entries=%d failed=%d improvements=%d",
            summary.duration_ms, summary.boards, summary.entries,
            summary.failed, summary.improvements,
        )
        return summary

    async def force_recalculation(self) -> RecomputeSummary:
        """Administrative full rebuild."""
        logger.info("Forced leaderboard recalculation requested")
        return await self.recompute_all()

    async def snapshot_previous_ranks(
        self, timeframe: LeaderboardTimeframe = LeaderboardTimeframe.WEEKLY,
    ) -> int:
        """Copy ``rank`` into ``previous_rank`` for every entry of *timeframe*."""
        count = await run_db(self._snapshot, parse_timeframe(timeframe))
        logger.info("Snapshotted previous ranks for %d %s entries", count, timeframe)
        return count

    async def notify_significant_changes(self) -> ChangeSummary:
        """Publish a position change for every entry that moved significantly
        since its ``previous_rank`` was recorded."""
        start = time.monotonic()
        summary = ChangeSummary()
        user_ids = await run_db(self._ranked_user_ids)

        for user_id in user_ids:
            try:
                entries = await run_db(self._entries_for_user, user_id)
                changed = False
                for entry in entries:
                    if not is_significant_change(entry.previous_rank, entry.rank):
                        continue
                    await self.bus.publish(Signal.LEADERBOARD_POSITION_CHANGE, {
                        "user_id": user_id,
                        "new_position": entry.rank,
                        "previous_position": entry.previous_rank,
                        "category": entry.category,
                        "timeframe": entry.timeframe,
                    })
                    summary.notifications += 1
                    changed = True
            except Exception:
                summary.failed += 1
                logger.exception("Failed to check rank changes for user %s", user_id)
                continue
            summary.users_processed += 1
            if changed:
                summary.users_with_changes += 1

        summary.duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Rank change sweep done in %dms: users=%d with_changes=%d "
            "notifications=%d failed=%d",
            summary.duration_ms, summary.users_processed, summary.users_with_changes,
            summary.notifications, summary.failed,
        )
        return summary

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    async def get_leaderboard(
        self,
        category: LeaderboardCategory | str,
        timeframe: LeaderboardTimeframe | str,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> LeaderboardPage:
        """One page of a board.  *page* is clamped to >= 1 and *page_size*
        to the configured bounds.

        Raises
        ------
        InvalidLeaderboardError
            If *category* or *timeframe* is unknown.
        """
        cat, tf = parse_category(category), parse_timeframe(timeframe)
        page = max(1, int(page))
        page_size = min(
            max(int(page_size), self.config.leaderboard_min_page_size),
            self.config.leaderboard_max_page_size,
        )
        rows, total = await run_db(self._page, cat, tf, (page - 1) * page_size, page_size)
        return LeaderboardPage(
            entries=rows,
            total=total,
            page=page,
            page_size=page_size,
            total_pages=total_pages(total, page_size),
        )

    async def get_top_user_ids(
        self,
        category: LeaderboardCategory | str,
        timeframe: LeaderboardTimeframe | str,
        limit: int,
    ) -> list[str]:
        """User ids of the top *limit* visible entries, without page clamping."""
        if limit <= 0:
            return []
        rows, _ = await run_db(
            self._page, parse_category(category), parse_timeframe(timeframe), 0, limit,
        )
        return [r.user_id for r in rows]

    async def count_ranked(
        self, category: LeaderboardCategory | str, timeframe: LeaderboardTimeframe | str,
    ) -> int:
        _, total = await run_db(
            self._page, parse_category(category), parse_timeframe(timeframe), 0, 0,
        )
        return total

    async def get_user_ranks(self, user_id: str) -> list[LeaderboardRow]:
        return await run_db(self._entries_for_user, user_id)

    async def get_user_position(
        self,
        user_id: str,
        category: LeaderboardCategory | str,
        timeframe: LeaderboardTimeframe | str,
    ) -> LeaderboardPosition:
        """Rank and score on one board; ``(0, 0)`` when not ranked."""
        entry = await run_db(
            self._entry, user_id, parse_category(category), parse_timeframe(timeframe),
        )
        if entry is None or entry.score <= 0:
            return LeaderboardPosition(rank=0, score=0)
        return LeaderboardPosition(rank=entry.rank, score=entry.score)
