"""
standing.engine.reputation — Point Awards, Milestones & Weekly Decay
=====================================================================

Pure calculation, no database I/O.

Awarding adds to both the lifetime and the weekly total.  Weekly decay
trims a percentage of the weekly total from both, capped by a tier chosen
from the lifetime total, and is paused entirely for users who were active
enough in the trailing week.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from standing.constants import (
    ACTIVITY_POINTS,
    MIN_WEEKLY_ACTIVITY_TO_PAUSE_REDUCTION,
    REDUCTION_TIERS,
    REPUTATION_MILESTONES,
    STREAK_MILESTONE_BONUS,
    WEEKLY_REDUCTION_PERCENTAGE,
    ReductionTier,
)
from standing.database.models import ActivityType

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ReputationState:
    """Detached snapshot of a user's reputation row."""

    user_id: str
    total_points: int = 0
    weekly_points: int = 0
    weekly_points_last_reset: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class DecayResult:
    """Outcome of one user's weekly decay.

    ``skipped`` is True when recent activity paused the decay; the new
    totals then equal the old ones.
    """

    skipped: bool
    reduction: int
    new_total: int
    new_weekly: int
    tier: str


# ---------------------------------------------------------------------------
# Awards
# ---------------------------------------------------------------------------
def points_for(activity_type: ActivityType | str) -> int:
    """Fixed point weight for *activity_type*; 0 for unknown types."""
    try:
        return ACTIVITY_POINTS[ActivityType(activity_type)]
    except ValueError:
        logger.warning("No point value for activity type %r", activity_type)
        return 0


def highest_crossed_milestone(old_total: int, new_total: int) -> int | None:
    """Highest milestone *m* with ``old_total < m <= new_total``, else None."""
    crossed = [m for m in REPUTATION_MILESTONES if old_total < m <= new_total]
    return crossed[-1] if crossed else None


def streak_bonus(current_streak: int) -> int:
    """Bonus for the highest streak milestone not above *current_streak*."""
    bonus = 0
    for milestone in sorted(STREAK_MILESTONE_BONUS):
        if milestone <= current_streak:
            bonus = STREAK_MILESTONE_BONUS[milestone]
    return bonus


# ---------------------------------------------------------------------------
# Decay
# ---------------------------------------------------------------------------
def reduction_tier(total_points: int) -> ReductionTier:
    for tier in REDUCTION_TIERS:
        if total_points <= tier.max_points:
            return tier
    return REDUCTION_TIERS[-1]


def compute_decay(
    total_points: int, weekly_points: int, recent_activity_count: int,
) -> DecayResult:
    """Apply one week of decay to a single user's totals.

    Parameters
    ----------
    total_points : Lifetime points before decay.
    weekly_points : Rolling weekly points before decay.
    recent_activity_count : Activity rows in the trailing 7 days.

    Returns
    -------
    DecayResult with the reduction applied to both totals, each floored at 0.
    """
    tier = reduction_tier(total_points)
    if recent_activity_count >= MIN_WEEKLY_ACTIVITY_TO_PAUSE_REDUCTION:
        return DecayResult(
            skipped=True, reduction=0,
            new_total=total_points, new_weekly=weekly_points, tier=tier.name,
        )

    reduction = min(
        (max(weekly_points, 0) * WEEKLY_REDUCTION_PERCENTAGE) // 100,
        tier.max_reduction,
    )
    return DecayResult(
        skipped=False,
        reduction=reduction,
        new_total=max(0, total_points - reduction),
        new_weekly=max(0, weekly_points - reduction),
        tier=tier.name,
    )
