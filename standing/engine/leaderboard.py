"""
standing.engine.leaderboard — Ranking & Rank-Change Detection
==============================================================

Pure calculation, no database I/O.

Ranks are 1-based sort positions over scores in descending order.
The sort is stable, so ties keep the order the scores were supplied in;
the service supplies them ordered by user id.
"""

from __future__ import annotations

import calendar
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta

from standing.constants import (
    POSITION_MILESTONES,
    RANK_IMPROVEMENT_THRESHOLD,
    SIGNIFICANT_MOVE_THRESHOLD,
    TOP_TIER_CUTOFF,
)
from standing.database.models import LeaderboardCategory, LeaderboardTimeframe
from standing.errors import InvalidLeaderboardError


@dataclass(frozen=True, slots=True)
class RankedEntry:
    user_id: str
    score: int
    rank: int
    previous_rank: int | None


# ---------------------------------------------------------------------------
# Parsing caller-supplied names
# ---------------------------------------------------------------------------
def parse_category(value: LeaderboardCategory | str) -> LeaderboardCategory:
    try:
        return LeaderboardCategory(str(value).lower())
    except ValueError:
        raise InvalidLeaderboardError(f"Unknown leaderboard category: {value!r}") from None


def parse_timeframe(value: LeaderboardTimeframe | str) -> LeaderboardTimeframe:
    try:
        return LeaderboardTimeframe(str(value).lower())
    except ValueError:
        raise InvalidLeaderboardError(f"Unknown leaderboard timeframe: {value!r}") from None


# ---------------------------------------------------------------------------
# Timeframes
# ---------------------------------------------------------------------------
def _one_month_before(moment: datetime) -> datetime:
    year, month = (moment.year, moment.month - 1) if moment.month > 1 else (moment.year - 1, 12)
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def date_threshold(timeframe: LeaderboardTimeframe, now: datetime) -> datetime | None:
    """Earliest timestamp counted for *timeframe*; None means unbounded."""
    if timeframe is LeaderboardTimeframe.WEEKLY:
        return now - timedelta(days=7)
    if timeframe is LeaderboardTimeframe.MONTHLY:
        return _one_month_before(now)
    return None


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------
def rank_scores(
    scores: Iterable[tuple[str, int]],
    existing_ranks: Mapping[str, int],
) -> list[RankedEntry]:
    """Assign ranks to ``(user_id, score)`` pairs.

    ``previous_rank`` is the user's rank before this recompute, or None for
    a user with no existing entry.
    """
    ordered = sorted(scores, key=lambda pair: pair[1], reverse=True)
    return [
        RankedEntry(
            user_id=user_id,
            score=score,
            rank=position,
            previous_rank=existing_ranks.get(user_id),
        )
        for position, (user_id, score) in enumerate(ordered, start=1)
    ]


def is_rank_improvement(previous_rank: int | None, rank: int) -> bool:
    """Climbed at least ten places in one recompute."""
    return previous_rank is not None and previous_rank - rank >= RANK_IMPROVEMENT_THRESHOLD


def is_significant_change(previous_rank: int | None, rank: int) -> bool:
    """Movement worth telling the user about in the weekly sweep.

    Any move of more than five places, crossing the top-10 boundary in
    either direction, or climbing into one of the 1/5/10/25/50 bands.
    """
    if previous_rank is None:
        return False
    if abs(rank - previous_rank) > SIGNIFICANT_MOVE_THRESHOLD:
        return True
    if (rank <= TOP_TIER_CUTOFF) != (previous_rank <= TOP_TIER_CUTOFF):
        return True
    return any(rank <= band < previous_rank for band in POSITION_MILESTONES)


def percentile_target_count(total: int, percentile: int | float) -> int:
    """How many top users make up the top *percentile* percent of *total*."""
    if total <= 0 or percentile <= 0:
        return 0
    return min(total, math.ceil(total * percentile / 100))


def total_pages(total: int, page_size: int) -> int:
    return math.ceil(total / page_size) if page_size > 0 else 0
