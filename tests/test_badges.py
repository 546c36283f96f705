"""
tests/test_badges.py — Unit Tests for the Badge Engine
=======================================================

Tests the handler-registry predicates, progress reporting, idempotent
awarding, full-check rate limiting, the weekly percentile sweep, and the
display / admin operations.
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest
from sqlalchemy import func, select

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
    UserReputation,
    UserStreak,
)
from standing.engine.badges import BadgeContext, badge_progress, is_eligible
from standing.engine.events import Signal
from standing.errors import NotFoundError


def run_async(coro):
    """Run an async coroutine in a new event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _badge(requirement: str, threshold: int, name: str = "b") -> SimpleNamespace:
    return SimpleNamespace(requirement=requirement, threshold_value=threshold, name=name)


def _badge_named(db_session, name: str) -> Badge:
    return db_session.scalar(select(Badge).where(Badge.name == name))


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------
class TestRequirementHandlers:
    def test_streak_kinds(self):
        ctx = BadgeContext(current_streak=4, longest_streak=12)
        assert is_eligible(_badge(BadgeRequirement.CURRENT_STREAK, 3), ctx)
        assert not is_eligible(_badge(BadgeRequirement.CURRENT_STREAK, 7), ctx)
        assert is_eligible(_badge(BadgeRequirement.MAX_STREAK, 10), ctx)

    def test_activity_counts(self):
        ctx = BadgeContext(activity_counts={"post": 5, "comment": 9, "upvote": 1})
        assert is_eligible(_badge(BadgeRequirement.POSTS_COUNT, 5), ctx)
        assert not is_eligible(_badge(BadgeRequirement.COMMENTS_COUNT, 10), ctx)
        assert is_eligible(_badge(BadgeRequirement.UPVOTES_GIVEN_COUNT, 1), ctx)

    def test_received_counts(self):
        ctx = BadgeContext(upvotes_received=10, comments_received=2)
        assert is_eligible(_badge(BadgeRequirement.UPVOTES_RECEIVED_COUNT, 10), ctx)
        assert not is_eligible(_badge(BadgeRequirement.COMMENTS_RECEIVED_COUNT, 3), ctx)

    def test_comment_quality_prefers_target_comment(self):
        ctx = BadgeContext(best_comment_upvotes=9, target_comment_upvotes=2)
        assert not is_eligible(_badge(BadgeRequirement.COMMENT_MIN_UPVOTES, 5), ctx)
        ctx = BadgeContext(best_comment_upvotes=9)
        assert is_eligible(_badge(BadgeRequirement.COMMENT_MIN_UPVOTES, 5), ctx)

    def test_post_quality(self):
        assert is_eligible(
            _badge(BadgeRequirement.POST_MIN_UPVOTES, 10), BadgeContext(best_post_upvotes=10),
        )

    def test_top_percent_needs_sweep_context(self):
        badge = _badge(BadgeRequirement.TOP_PERCENT_WEEKLY, 5)
        assert not is_eligible(badge, BadgeContext(leaderboard_rank=1, leaderboard_total=20))
        assert is_eligible(badge, BadgeContext(
            leaderboard_rank=1, leaderboard_total=20, percentile_context=True,
        ))
        assert not is_eligible(badge, BadgeContext(
            leaderboard_rank=2, leaderboard_total=20, percentile_context=True,
        ))

    def test_unknown_kind_fails_closed(self):
        assert not is_eligible(_badge("karma_farming", 1), BadgeContext(current_streak=99))


class TestProgress:
    def test_count_progress(self):
        ctx = BadgeContext(activity_counts={"comment": 5})
        assert badge_progress(_badge(BadgeRequirement.COMMENTS_COUNT, 10), ctx) == (50, 5)

    def test_progress_capped_at_100(self):
        ctx = BadgeContext(current_streak=30)
        assert badge_progress(_badge(BadgeRequirement.CURRENT_STREAK, 7), ctx) == (100, 30)

    def test_top_percent_progress(self):
        badge = _badge(BadgeRequirement.TOP_PERCENT_WEEKLY, 5)
        assert badge_progress(badge, BadgeContext()) == (0, 0)
        assert badge_progress(badge, BadgeContext(leaderboard_rank=1, leaderboard_total=40)) == (100, 2)
        assert badge_progress(badge, BadgeContext(leaderboard_rank=20, leaderboard_total=40)) == (0, 50)


# ---------------------------------------------------------------------------
# BadgeEngine service
# ---------------------------------------------------------------------------
def _add_posts(db_session, user_id: str, n: int) -> None:
    db_session.add_all([UserActivity(user_id=user_id, activity_type="post") for _ in range(n)])
    db_session.commit()


class TestAwarding:
    def test_award_is_idempotent(self, app, recorder, db_session):
        _add_posts(db_session, "u1", 1)

        first = run_async(app.badges.check_activity_count_badges("u1", ActivityType.POST))
        second = run_async(app.badges.check_activity_count_badges("u1", ActivityType.POST))

        assert [a.badge.name for a in first] == ["First Post"]
        assert second == []
        assert db_session.scalar(select(func.count()).select_from(UserBadge)) == 1
        assert [p["badge_name"] for p in recorder.of(Signal.BADGE_EARNED)] == ["First Post"]

    def test_direct_award_twice_returns_none(self, app, db_session):
        badge = run_async(app.badges.get_available_badges("u1"))[0].badge
        assert run_async(app.badges.award_badge("u1", badge)) is not None
        assert run_async(app.badges.award_badge("u1", badge)) is None

    def test_full_check_skips_top_percent(self, app, db_session):
        db_session.add(UserStreak(user_id="u1", current_streak=3, longest_streak=3))
        db_session.add(UserReputation(user_id="u1", total_points=500, weekly_points=0))
        db_session.commit()
        _add_posts(db_session, "u1", 5)
        run_async(app.leaderboards.recompute_all())

        awarded = run_async(app.badges.check_all_user_badges("u1"))

        names = {a.badge.name for a in awarded}
        assert names == {"3-Day Streak", "First Post", "5 Posts"}

    def test_full_check_is_rate_limited(self, app, db_session, clock):
        _add_posts(db_session, "u1", 1)
        assert len(run_async(app.badges.check_all_user_badges("u1"))) == 1

        _add_posts(db_session, "u1", 4)
        assert run_async(app.badges.check_all_user_badges("u1")) == []
        assert app.badges.is_rate_limited("u1")

        clock.advance(seconds=61)
        assert [a.badge.name for a in run_async(app.badges.check_all_user_badges("u1"))] == ["5 Posts"]

    def test_expired_cooldowns_are_forgotten(self, app, clock):
        run_async(app.badges.check_all_user_badges("u1"))
        assert "u1" in app.badges._last_full_check

        clock.advance(seconds=61)
        run_async(app.badges.check_all_user_badges("u2"))

        assert list(app.badges._last_full_check) == ["u2"]

    def test_forced_check_bypasses_limit(self, app, db_session):
        run_async(app.badges.check_all_user_badges("u1"))
        _add_posts(db_session, "u1", 1)
        assert len(run_async(app.badges.force_check_all_user_badges("u1"))) == 1

    def test_comment_quality_uses_target_comment(self, app, db_session):
        db_session.add_all([
            Comment(id="c1", user_id="u1", parent_id="p0", upvotes=6),
            Comment(id="c2", user_id="u1", parent_id="p0", upvotes=1),
        ])
        db_session.commit()

        assert run_async(app.badges.check_comment_quality_badges("u1", "c2")) == []
        [awarded] = run_async(app.badges.check_comment_quality_badges("u1", "c1"))
        assert awarded.badge.name == "Insightful"

    def test_received_interactions(self, app, db_session):
        db_session.add(Comment(id="c1", user_id="owner", parent_id=None, upvotes=1))
        db_session.commit()
        db_session.add(CommentVote(user_id="fan", comment_id="c1", vote_type="upvote"))
        db_session.commit()

        awarded = run_async(app.badges.check_received_interaction_badges("owner"))
        assert [a.badge.name for a in awarded] == ["First Upvote Received"]

    def test_narrow_check_failure_returns_empty(self, app):
        async def _boom(*args, **kwargs):
            raise RuntimeError("db gone")

        app.badges._check = _boom
        assert run_async(app.badges.check_streak_badges("u1")) == []


class TestPercentileSweep:
    def _seed_reputation(self, db_session, n: int) -> None:
        db_session.add_all([
            UserReputation(user_id=f"user{i:02d}", total_points=1000 - i * 10, weekly_points=0)
            for i in range(n)
        ])
        db_session.commit()

    def test_top_five_percent_of_twenty_is_one_user(self, app, db_session):
        self._seed_reputation(db_session, 20)
        run_async(app.leaderboards.recompute(LeaderboardCategory.REPUTATION, LeaderboardTimeframe.ALL_TIME))

        summary = run_async(app.badges.check_weekly_percent_badges())

        assert summary.awarded == 1
        holders = db_session.scalars(select(UserBadge.user_id)).all()
        assert holders == ["user00"]

    def test_target_count_rounds_up(self, app, db_session):
        self._seed_reputation(db_session, 21)
        run_async(app.leaderboards.recompute(LeaderboardCategory.REPUTATION, LeaderboardTimeframe.ALL_TIME))

        summary = run_async(app.badges.check_weekly_percent_badges())

        assert summary.candidates == 2
        assert sorted(db_session.scalars(select(UserBadge.user_id)).all()) == ["user00", "user01"]

    def test_rerun_awards_nothing_new(self, app, db_session):
        self._seed_reputation(db_session, 20)
        run_async(app.leaderboards.recompute(LeaderboardCategory.REPUTATION, LeaderboardTimeframe.ALL_TIME))
        run_async(app.badges.check_weekly_percent_badges())
        assert run_async(app.badges.check_weekly_percent_badges()).awarded == 0

    def test_empty_board(self, app):
        summary = run_async(app.badges.check_weekly_percent_badges())
        assert summary.awarded == 0
        assert summary.candidates == 0


class TestBadgeQueries:
    def test_toggle_display(self, app, db_session):
        _add_posts(db_session, "u1", 1)
        [awarded] = run_async(app.badges.check_activity_count_badges("u1", ActivityType.POST))

        shown = run_async(app.badges.toggle_display("u1", awarded.badge.id, True))
        assert shown.is_displayed

    def test_toggle_unearned_badge_raises(self, app, db_session):
        badge = _badge_named(db_session, "First Post")
        with pytest.raises(NotFoundError):
            run_async(app.badges.toggle_display("u1", badge.id, True))

    def test_available_badges_report_progress(self, app, db_session):
        db_session.add_all([UserActivity(user_id="u1", activity_type="comment") for _ in range(5)])
        db_session.commit()

        available = {a.badge.name: a for a in run_async(app.badges.get_available_badges("u1"))}

        assert available["10 Comments"].progress == 50
        assert available["10 Comments"].current_value == 5
        assert not available["10 Comments"].is_achieved

    def test_summary(self, app, db_session):
        _add_posts(db_session, "u1", 1)
        run_async(app.badges.check_activity_count_badges("u1", ActivityType.POST))
        db_session.add(UserActivity(user_id="u1", activity_type="comment"))
        db_session.commit()
        run_async(app.badges.check_activity_count_badges("u1", ActivityType.COMMENT))

        summary = run_async(app.badges.get_user_badge_summary("u1"))
        assert summary["total_badges"] == 2
        assert summary["badges_by_category"] == {"content": 1, "engagement": 1}
        assert len(summary["recent_badges"]) == 2

    def test_admin_award(self, app, db_session):
        badge = _badge_named(db_session, "Popular")
        awarded = run_async(app.badges.award_badge_to_users(badge.id, ["a", "b"]))
        assert {a.user_id for a in awarded} == {"a", "b"}
        assert run_async(app.badges.award_badge_to_users(badge.id, ["a"])) == []

    def test_admin_award_unknown_badge(self, app):
        with pytest.raises(NotFoundError):
            run_async(app.badges.award_badge_to_users(99999, ["a"]))
