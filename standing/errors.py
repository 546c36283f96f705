"""
standing.errors — Typed errors surfaced to callers
===================================================

Caller-initiated lookups (a badge by id, a user's reputation record) raise
these instead of returning ``None`` so an outer layer can map them to its
own "not found" response.  System-initiated flows never raise them; they
create default state lazily instead.
"""

from __future__ import annotations


class StandingError(Exception):
    """Base class for all engine errors."""


class NotFoundError(StandingError, ValueError):
    """A requested record does not exist."""

    def __init__(self, kind: str, key: object) -> None:
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


class InvalidLeaderboardError(StandingError, ValueError):
    """Unknown leaderboard category or timeframe supplied by a caller."""
