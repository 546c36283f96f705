"""
standing.database.models — SQLAlchemy 2.0 Data Models
=====================================================

Tables owned by the engine:
- user_activities   — Append-only journal of qualifying user actions
- user_streaks      — One row per user: current / longest daily streak
- user_reputations  — One row per user: lifetime + rolling weekly points
- badges            — Badge catalogue (admin-managed, read-mostly)
- user_badges       — Earned badges, unique per (user, badge)
- leaderboards      — Ranked entries per (user, category, timeframe)

Tables mirrored from the forum (read-only to the engine):
- comments          — Posts (parent_id NULL) and replies
- comment_votes     — Up/down votes cast on comments

User ids are opaque strings issued by the platform (UUIDs in production).
"""

from __future__ import annotations

import enum
from datetime import UTC, date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

USER_ID_LENGTH = 64


def utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Standing ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class ActivityType(enum.StrEnum):
    """Qualifying user actions that feed the engine."""
    POST = "post"
    COMMENT = "comment"
    UPVOTE = "upvote"
    DOWNVOTE = "downvote"
    LOGIN = "login"


class VoteType(enum.StrEnum):
    UPVOTE = "upvote"
    DOWNVOTE = "downvote"


class BadgeCategory(enum.StrEnum):
    STREAK = "streak"
    CONTENT = "content"
    ENGAGEMENT = "engagement"
    VOTING = "voting"
    RECEPTION = "reception"
    QUALITY = "quality"


class BadgeRequirement(enum.StrEnum):
    """Discriminator for the rule a badge is evaluated against."""
    CURRENT_STREAK = "current_streak"
    MAX_STREAK = "max_streak"
    POSTS_COUNT = "posts_count"
    COMMENTS_COUNT = "comments_count"
    UPVOTES_GIVEN_COUNT = "upvotes_given_count"
    UPVOTES_RECEIVED_COUNT = "upvotes_received_count"
    COMMENTS_RECEIVED_COUNT = "comments_received_count"
    COMMENT_MIN_UPVOTES = "comment_min_upvotes"
    POST_MIN_UPVOTES = "post_min_upvotes"
    TOP_PERCENT_WEEKLY = "top_percent_weekly"


class LeaderboardCategory(enum.StrEnum):
    POSTS = "posts"
    COMMENTS = "comments"
    UPVOTES_GIVEN = "upvotes_given"
    UPVOTES_RECEIVED = "upvotes_received"
    REPUTATION = "reputation"


class LeaderboardTimeframe(enum.StrEnum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ALL_TIME = "all_time"


# ---------------------------------------------------------------------------
# UserActivity — append-only activity journal
# ---------------------------------------------------------------------------
class UserActivity(Base):
    __tablename__ = "user_activities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(USER_ID_LENGTH), nullable=False)
    activity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(64), default=None)
    entity_type: Mapped[str | None] = mapped_column(String(32), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_user_activities_user_time", "user_id", "created_at"),
        Index("ix_user_activities_type_time", "activity_type", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<UserActivity id={self.id} user={self.user_id} "
            f"type={self.activity_type}>"
        )


# ---------------------------------------------------------------------------
# UserStreak — daily activity streak, one row per user
# ---------------------------------------------------------------------------
class UserStreak(Base):
    __tablename__ = "user_streaks"

    user_id: Mapped[str] = mapped_column(String(USER_ID_LENGTH), primary_key=True)
    current_streak: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    longest_streak: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_activity_date: Mapped[date | None] = mapped_column(Date, default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index("ix_user_streaks_last_date", "last_activity_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<UserStreak user={self.user_id} current={self.current_streak} "
            f"longest={self.longest_streak}>"
        )


# ---------------------------------------------------------------------------
# UserReputation — lifetime + rolling weekly points, one row per user
# ---------------------------------------------------------------------------
class UserReputation(Base):
    __tablename__ = "user_reputations"

    user_id: Mapped[str] = mapped_column(String(USER_ID_LENGTH), primary_key=True)
    total_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    weekly_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    weekly_points_last_reset: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index("ix_user_reputations_total", "total_points"),
    )

    def __repr__(self) -> str:
        return (
            f"<UserReputation user={self.user_id} total={self.total_points} "
            f"weekly={self.weekly_points}>"
        )


# ---------------------------------------------------------------------------
# Badge — catalogue entry
# ---------------------------------------------------------------------------
class Badge(Base):
    __tablename__ = "badges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[str] = mapped_column(Text, default="")
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    requirement: Mapped[str] = mapped_column(String(40), nullable=False)
    threshold_value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    awards: Mapped[list[UserBadge]] = relationship(back_populates="badge")

    __table_args__ = (
        Index("ix_badges_requirement_active", "requirement", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<Badge id={self.id} name={self.name!r} req={self.requirement}>"


# ---------------------------------------------------------------------------
# UserBadge — award record, at most one per (user, badge)
# ---------------------------------------------------------------------------
class UserBadge(Base):
    __tablename__ = "user_badges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(USER_ID_LENGTH), nullable=False)
    badge_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("badges.id", ondelete="CASCADE"), nullable=False
    )
    earned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    is_displayed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    badge: Mapped[Badge] = relationship(back_populates="awards")

    __table_args__ = (
        UniqueConstraint("user_id", "badge_id", name="uq_user_badges_user_badge"),
        Index("ix_user_badges_user", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<UserBadge user={self.user_id} badge={self.badge_id}>"


# ---------------------------------------------------------------------------
# LeaderboardEntry — rank per (user, category, timeframe)
# ---------------------------------------------------------------------------
class LeaderboardEntry(Base):
    __tablename__ = "leaderboards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(USER_ID_LENGTH), nullable=False)
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    timeframe: Mapped[str] = mapped_column(String(20), nullable=False)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    previous_rank: Mapped[int | None] = mapped_column(Integer, default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id", "category", "timeframe",
            name="uq_leaderboards_user_category_timeframe",
        ),
        Index("ix_leaderboards_board_score", "category", "timeframe", "score"),
    )

    def __repr__(self) -> str:
        return (
            f"<LeaderboardEntry user={self.user_id} {self.category}/{self.timeframe} "
            f"rank={self.rank} score={self.score}>"
        )


# ---------------------------------------------------------------------------
# Comment / CommentVote — forum content mirrored for badge + board queries
# ---------------------------------------------------------------------------
class Comment(Base):
    """A forum comment.  ``parent_id`` NULL marks a top-level post."""
    __tablename__ = "comments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(USER_ID_LENGTH), nullable=False)
    parent_id: Mapped[str | None] = mapped_column(String(64), default=None)
    upvotes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    votes: Mapped[list[CommentVote]] = relationship(back_populates="comment")

    __table_args__ = (
        Index("ix_comments_user", "user_id"),
        Index("ix_comments_parent", "parent_id"),
    )

    def __repr__(self) -> str:
        return f"<Comment id={self.id} user={self.user_id} parent={self.parent_id}>"


class CommentVote(Base):
    __tablename__ = "comment_votes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(USER_ID_LENGTH), nullable=False)
    comment_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("comments.id", ondelete="CASCADE"), nullable=False
    )
    vote_type: Mapped[str] = mapped_column(String(10), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    comment: Mapped[Comment] = relationship(back_populates="votes")

    __table_args__ = (
        Index("ix_comment_votes_comment", "comment_id"),
        Index("ix_comment_votes_type_time", "vote_type", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<CommentVote id={self.id} voter={self.user_id} "
            f"comment={self.comment_id} type={self.vote_type}>"
        )
