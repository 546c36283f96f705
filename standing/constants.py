"""
standing.constants — Game Rules & Shared Constants
===================================================

Single source of truth for point weights, milestone ladders, decay tiers,
and leaderboard thresholds.  Import from here instead of duplicating in
engine and service modules.
"""

from __future__ import annotations

from typing import NamedTuple

from standing.database.models import ActivityType

# ---------------------------------------------------------------------------
# Reputation points per activity
# ---------------------------------------------------------------------------
ACTIVITY_POINTS: dict[ActivityType, int] = {
    ActivityType.POST: 10,
    ActivityType.COMMENT: 5,
    ActivityType.UPVOTE: 2,
    ActivityType.DOWNVOTE: 1,
    ActivityType.LOGIN: 1,
}

# Ascending; at most one signal per award, for the highest crossed.
REPUTATION_MILESTONES: tuple[int, ...] = (
    100, 500, 1_000, 2_500, 5_000, 10_000, 25_000, 50_000, 100_000,
)

# ---------------------------------------------------------------------------
# Streaks
# ---------------------------------------------------------------------------
STREAK_MILESTONES: tuple[int, ...] = (3, 7, 14, 30, 60, 100, 365)

STREAK_MILESTONE_BONUS: dict[int, int] = {
    3: 5,
    7: 15,
    14: 30,
    30: 75,
    60: 150,
    100: 300,
    365: 1_000,
}

# ---------------------------------------------------------------------------
# Weekly decay
# ---------------------------------------------------------------------------
WEEKLY_REDUCTION_PERCENTAGE = 10
MIN_WEEKLY_ACTIVITY_TO_PAUSE_REDUCTION = 5
DECAY_LOOKBACK_DAYS = 7


class ReductionTier(NamedTuple):
    name: str
    max_points: float  # inclusive upper bound on total points
    max_reduction: int


# Checked in order; the first tier whose max_points covers the total wins.
REDUCTION_TIERS: tuple[ReductionTier, ...] = (
    ReductionTier("BRONZE", 500, 25),
    ReductionTier("SILVER", 2_000, 50),
    ReductionTier("GOLD", 5_000, 75),
    ReductionTier("PLATINUM", float("inf"), 100),
)

# ---------------------------------------------------------------------------
# Leaderboards
# ---------------------------------------------------------------------------
RANK_IMPROVEMENT_THRESHOLD = 10   # positions gained in one recompute
SIGNIFICANT_MOVE_THRESHOLD = 5    # weekly sweep: |delta| strictly greater
TOP_TIER_CUTOFF = 10
POSITION_MILESTONES: tuple[int, ...] = (1, 5, 10, 25, 50)

DEFAULT_PAGE_SIZE = 20
