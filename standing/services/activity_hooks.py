"""
standing.services.activity_hooks — Inbound Event Wiring
========================================================

Subscribes the engine to the forum's events and runs each flow in causal
order, awaiting every step:

    record activity (streak)  →  award points  →  badge checks

A streak milestone published during the first step is handled (bonus
points, then streak badges) before the flow moves on, because the bus
awaits subscribers sequentially.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from standing.database.engine import get_session, run_db
from standing.database.models import ActivityType, Comment, VoteType
from standing.engine.events import (
    CommentCreatedEvent,
    CommentVotedEvent,
    GamificationEvent,
    Signal,
    UserLoggedInEvent,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from standing.services.badge_service import BadgeEngine
    from standing.services.event_bus import EventBus
    from standing.services.reputation_service import ReputationLedger
    from standing.services.streak_service import StreakTracker

logger = logging.getLogger(__name__)


class ActivityHooks:
    """Bridges inbound forum events to the streak, reputation and badge services."""

    def __init__(
        self,
        engine: Engine,
        bus: EventBus,
        streaks: StreakTracker,
        ledger: ReputationLedger,
        badges: BadgeEngine,
    ) -> None:
        self.engine = engine
        self.bus = bus
        self.streaks = streaks
        self.ledger = ledger
        self.badges = badges

    def register(self) -> None:
        self.bus.subscribe(GamificationEvent.COMMENT_CREATED, self.on_comment_created)
        self.bus.subscribe(GamificationEvent.COMMENT_VOTED, self.on_comment_voted)
        self.bus.subscribe(GamificationEvent.USER_LOGGED_IN, self.on_user_logged_in)
        self.bus.subscribe(Signal.STREAK_MILESTONE, self.ledger.award_streak_bonus)
        self.bus.subscribe(Signal.STREAK_MILESTONE, self.on_streak_milestone)
        logger.info("Activity hooks registered")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _comment(self, comment_id: str) -> tuple[str, str | None] | None:
        """``(owner_id, parent_id)`` from the forum mirror, or None."""
        with get_session(self.engine) as session:
            comment = session.get(Comment, comment_id)
            if comment is None:
                return None
            return comment.user_id, comment.parent_id

    async def _record_and_award(
        self, user_id: str, activity: ActivityType, entity_id: str | None = None,
    ) -> None:
        await self.streaks.record_activity(
            user_id, activity, entity_id=entity_id,
            entity_type="comment" if entity_id else None,
        )
        await self.ledger.award_for_activity(user_id, activity)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------
    async def on_comment_created(self, payload: dict[str, Any]) -> None:
        event = CommentCreatedEvent.from_payload(payload)
        activity = ActivityType.POST if event.is_post else ActivityType.COMMENT

        await self._record_and_award(event.user_id, activity, event.comment_id)
        await self.badges.check_activity_count_badges(event.user_id, activity)

        if event.is_post:
            await self.badges.check_post_quality_badges(event.user_id, event.comment_id)
            return

        parent = await run_db(self._comment, event.parent_id)
        if parent is None:
            logger.debug("Parent comment %s not mirrored; skipping reply badges", event.parent_id)
            return
        parent_owner, _ = parent
        if parent_owner != event.user_id:
            await self.badges.check_received_interaction_badges(parent_owner)

    async def on_comment_voted(self, payload: dict[str, Any]) -> None:
        event = CommentVotedEvent.from_payload(payload)
        activity = (
            ActivityType.UPVOTE if event.vote_type is VoteType.UPVOTE else ActivityType.DOWNVOTE
        )

        await self._record_and_award(event.voter_user_id, activity, event.comment_id)
        await self.badges.check_activity_count_badges(event.voter_user_id, activity)

        if event.vote_type is not VoteType.UPVOTE:
            return

        owner = event.comment_owner_user_id
        await self.badges.check_received_interaction_badges(owner)
        comment = await run_db(self._comment, event.comment_id)
        if comment is not None and comment[1] is None:
            await self.badges.check_post_quality_badges(owner, event.comment_id)
        else:
            await self.badges.check_comment_quality_badges(owner, event.comment_id)

    async def on_user_logged_in(self, payload: dict[str, Any]) -> None:
        event = UserLoggedInEvent.from_payload(payload)
        await self._record_and_award(event.user_id, ActivityType.LOGIN)
        await self.badges.check_streak_badges(event.user_id)

    async def on_streak_milestone(self, payload: dict[str, Any]) -> None:
        await self.badges.check_streak_badges(str(payload["user_id"]))
