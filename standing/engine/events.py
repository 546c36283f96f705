"""
standing.engine.events — Inbound Events and Outbound Signals
=============================================================

Topic names and payload shapes for everything that crosses the event bus.

Inbound (:class:`GamificationEvent`) topics are published by the forum
when something happens to content.  Outbound (:class:`Signal`) topics are
published by the engine for a separate notification layer.  Payloads are
plain dicts carrying ids and numbers only, never ORM objects.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any

from standing.database.models import VoteType

__all__ = [
    "GamificationEvent",
    "Signal",
    "CommentCreatedEvent",
    "CommentVotedEvent",
    "UserLoggedInEvent",
]


class GamificationEvent(enum.StrEnum):
    COMMENT_CREATED = "comment.created"
    COMMENT_VOTED = "comment.voted"
    USER_LOGGED_IN = "user.logged_in"


class Signal(enum.StrEnum):
    STREAK_AT_RISK = "streak.at_risk"
    STREAK_BROKEN = "streak.broken"
    STREAK_MILESTONE = "streak.milestone"
    BADGE_EARNED = "badge.earned"
    REPUTATION_MILESTONE = "reputation.milestone"
    REPUTATION_CHANGED = "reputation.changed"
    LEADERBOARD_POSITION_CHANGE = "leaderboard.position_change"


# ---------------------------------------------------------------------------
# Inbound payloads
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class CommentCreatedEvent:
    """A comment was written.  ``parent_id`` None means a top-level post."""

    user_id: str
    comment_id: str
    parent_id: str | None = None

    @property
    def is_post(self) -> bool:
        return self.parent_id is None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> CommentCreatedEvent:
        return cls(
            user_id=str(payload["user_id"]),
            comment_id=str(payload["comment_id"]),
            parent_id=(
                str(payload["parent_id"])
                if payload.get("parent_id") is not None else None
            ),
        )


@dataclass(frozen=True, slots=True)
class CommentVotedEvent:
    voter_user_id: str
    comment_id: str
    comment_owner_user_id: str
    vote_type: VoteType

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> CommentVotedEvent:
        return cls(
            voter_user_id=str(payload["voter_user_id"]),
            comment_id=str(payload["comment_id"]),
            comment_owner_user_id=str(payload["comment_owner_user_id"]),
            vote_type=VoteType(payload["vote_type"]),
        )


@dataclass(frozen=True, slots=True)
class UserLoggedInEvent:
    user_id: str

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> UserLoggedInEvent:
        return cls(user_id=str(payload["user_id"]))
