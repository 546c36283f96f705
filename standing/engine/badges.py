"""
standing.engine.badges — Badge Requirement Predicates
======================================================

Handler-registry implementation for badge eligibility.  Each
:class:`BadgeRequirement` maps to a pure handler that receives the badge's
threshold and a read-only :class:`BadgeContext` snapshot.  Adding a
requirement kind means adding one handler and one registry entry.

This module is pure calculation — no database I/O, no event emission.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

from standing.database.models import ActivityType, BadgeRequirement
from standing.engine.leaderboard import percentile_target_count

logger = logging.getLogger(__name__)

# Activity type counted by each "N things done" requirement
REQUIREMENT_ACTIVITY: dict[BadgeRequirement, ActivityType] = {
    BadgeRequirement.POSTS_COUNT: ActivityType.POST,
    BadgeRequirement.COMMENTS_COUNT: ActivityType.COMMENT,
    BadgeRequirement.UPVOTES_GIVEN_COUNT: ActivityType.UPVOTE,
}

# Requirements re-checked when the user performs an activity of this type
ACTIVITY_REQUIREMENTS: dict[ActivityType, tuple[BadgeRequirement, ...]] = {
    activity: (requirement,) for requirement, activity in REQUIREMENT_ACTIVITY.items()
}

STREAK_REQUIREMENTS = (BadgeRequirement.CURRENT_STREAK, BadgeRequirement.MAX_STREAK)
RECEIVED_REQUIREMENTS = (
    BadgeRequirement.UPVOTES_RECEIVED_COUNT,
    BadgeRequirement.COMMENTS_RECEIVED_COUNT,
)


class BadgeLike(Protocol):
    requirement: str
    threshold_value: int


# ---------------------------------------------------------------------------
# Badge Context — passed to every requirement handler
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class BadgeContext:
    """Snapshot of user state passed to requirement handlers.

    Parameters
    ----------
    current_streak, longest_streak : From the user's streak row.
    activity_counts : ActivityType value → journal rows for this user.
    upvotes_received : Upvotes cast on any of the user's comments.
    comments_received : Replies to any of the user's comments.
    best_comment_upvotes : Highest upvote count on any of the user's comments.
    best_post_upvotes : Highest upvote count on the user's top-level posts.
    target_comment_upvotes : Upvotes on the comment that triggered the check,
        when there is one.
    leaderboard_rank, leaderboard_total : Position on, and ranked size of,
        the REPUTATION / ALL_TIME board.
    percentile_context : True only when built by the weekly percentile sweep.
    """

    current_streak: int = 0
    longest_streak: int = 0
    activity_counts: dict[str, int] = field(default_factory=dict)
    upvotes_received: int = 0
    comments_received: int = 0
    best_comment_upvotes: int = 0
    best_post_upvotes: int = 0
    target_comment_upvotes: int | None = None
    leaderboard_rank: int = 0
    leaderboard_total: int = 0
    percentile_context: bool = False

    def count(self, activity: ActivityType) -> int:
        return self.activity_counts.get(activity.value, 0)


# ---------------------------------------------------------------------------
# Requirement handlers — pure functions (threshold, ctx) → bool
# ---------------------------------------------------------------------------
def _check_current_streak(threshold: int, ctx: BadgeContext) -> bool:
    return ctx.current_streak >= threshold


def _check_max_streak(threshold: int, ctx: BadgeContext) -> bool:
    return ctx.longest_streak >= threshold


def _activity_count_check(activity: ActivityType) -> Callable[[int, BadgeContext], bool]:
    def _check(threshold: int, ctx: BadgeContext) -> bool:
        return ctx.count(activity) >= threshold

    _check.__name__ = f"_check_{activity.value}_count"
    return _check


def _check_upvotes_received(threshold: int, ctx: BadgeContext) -> bool:
    return ctx.upvotes_received >= threshold


def _check_comments_received(threshold: int, ctx: BadgeContext) -> bool:
    return ctx.comments_received >= threshold


def _check_comment_min_upvotes(threshold: int, ctx: BadgeContext) -> bool:
    """The triggering comment when known, else the user's best comment."""
    upvotes = (
        ctx.target_comment_upvotes
        if ctx.target_comment_upvotes is not None
        else ctx.best_comment_upvotes
    )
    return upvotes >= threshold


def _check_post_min_upvotes(threshold: int, ctx: BadgeContext) -> bool:
    return ctx.best_post_upvotes >= threshold


def _check_top_percent(threshold: int, ctx: BadgeContext) -> bool:
    """Needs full leaderboard context, so only the weekly sweep may pass."""
    if not ctx.percentile_context:
        return False
    if ctx.leaderboard_rank <= 0 or ctx.leaderboard_total <= 0:
        return False
    return ctx.leaderboard_rank <= percentile_target_count(ctx.leaderboard_total, threshold)


# ---------------------------------------------------------------------------
# Handler registry
# ---------------------------------------------------------------------------
REQUIREMENT_HANDLERS: dict[BadgeRequirement, Callable[[int, BadgeContext], bool]] = {
    BadgeRequirement.CURRENT_STREAK: _check_current_streak,
    BadgeRequirement.MAX_STREAK: _check_max_streak,
    BadgeRequirement.POSTS_COUNT: _activity_count_check(ActivityType.POST),
    BadgeRequirement.COMMENTS_COUNT: _activity_count_check(ActivityType.COMMENT),
    BadgeRequirement.UPVOTES_GIVEN_COUNT: _activity_count_check(ActivityType.UPVOTE),
    BadgeRequirement.UPVOTES_RECEIVED_COUNT: _check_upvotes_received,
    BadgeRequirement.COMMENTS_RECEIVED_COUNT: _check_comments_received,
    BadgeRequirement.COMMENT_MIN_UPVOTES: _check_comment_min_upvotes,
    BadgeRequirement.POST_MIN_UPVOTES: _check_post_min_upvotes,
    BadgeRequirement.TOP_PERCENT_WEEKLY: _check_top_percent,
}


def is_eligible(badge: BadgeLike, ctx: BadgeContext) -> bool:
    """Evaluate *badge* against *ctx*.  Unknown requirement kinds fail closed."""
    try:
        requirement = BadgeRequirement(badge.requirement)
    except ValueError:
        requirement = None
    handler = REQUIREMENT_HANDLERS.get(requirement) if requirement is not None else None
    if handler is None:
        logger.warning(
            "Unknown badge requirement %r on badge %r; treating as ineligible",
            badge.requirement, getattr(badge, "name", "?"),
        )
        return False
    return handler(badge.threshold_value, ctx)


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------
def _current_value(requirement: BadgeRequirement, ctx: BadgeContext) -> int:
    if requirement in REQUIREMENT_ACTIVITY:
        return ctx.count(REQUIREMENT_ACTIVITY[requirement])
    return {
        BadgeRequirement.CURRENT_STREAK: ctx.current_streak,
        BadgeRequirement.MAX_STREAK: ctx.longest_streak,
        BadgeRequirement.UPVOTES_RECEIVED_COUNT: ctx.upvotes_received,
        BadgeRequirement.COMMENTS_RECEIVED_COUNT: ctx.comments_received,
        BadgeRequirement.COMMENT_MIN_UPVOTES: ctx.best_comment_upvotes,
        BadgeRequirement.POST_MIN_UPVOTES: ctx.best_post_upvotes,
    }.get(requirement, 0)


def badge_progress(badge: BadgeLike, ctx: BadgeContext) -> tuple[int, int]:
    """Return ``(progress_percent, current_value)`` for display.

    Top-percent badges report the user's current percentile as the value and
    progress of 100 when inside the target band, else 0.
    """
    try:
        requirement = BadgeRequirement(badge.requirement)
    except ValueError:
        return 0, 0

    if requirement is BadgeRequirement.TOP_PERCENT_WEEKLY:
        if ctx.leaderboard_rank <= 0 or ctx.leaderboard_total <= 0:
            return 0, 0
        percentile = ctx.leaderboard_rank / ctx.leaderboard_total * 100
        inside = ctx.leaderboard_rank <= percentile_target_count(
            ctx.leaderboard_total, badge.threshold_value,
        )
        return (100 if inside else 0), round(percentile)

    current = _current_value(requirement, ctx)
    if badge.threshold_value <= 0:
        return 100, current
    return min(100, round(current / badge.threshold_value * 100)), current
