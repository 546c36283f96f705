"""
standing.database.seed — Default Badge Catalogue Seeder
========================================================

Baseline badges seeded on first startup so a fresh install awards
something from the very first post.

Idempotent — rows are matched by ``name`` and only missing badges are
inserted.  Thresholds or descriptions edited later by an admin are never
overwritten.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from standing.database.models import Badge, BadgeCategory, BadgeRequirement

logger = logging.getLogger(__name__)

Req = BadgeRequirement
Cat = BadgeCategory


# ---------------------------------------------------------------------------
# Default badge catalogue
# ---------------------------------------------------------------------------
DEFAULT_BADGES: list[tuple[str, str, BadgeCategory, BadgeRequirement, int]] = [
    # Streaks
    ("3-Day Streak", "Active 3 days in a row", Cat.STREAK, Req.CURRENT_STREAK, 3),
    ("7-Day Streak", "Active 7 days in a row", Cat.STREAK, Req.CURRENT_STREAK, 7),
    ("14-Day Streak", "Active 14 days in a row", Cat.STREAK, Req.CURRENT_STREAK, 14),
    ("30-Day Streak", "Active 30 days in a row", Cat.STREAK, Req.CURRENT_STREAK, 30),
    ("60-Day Streak", "Active 60 days in a row", Cat.STREAK, Req.CURRENT_STREAK, 60),
    ("100-Day Streak", "Active 100 days in a row", Cat.STREAK, Req.CURRENT_STREAK, 100),
    ("365-Day Streak", "Active every day for a year", Cat.STREAK, Req.CURRENT_STREAK, 365),
    # Content
    ("First Post", "Create your first post", Cat.CONTENT, Req.POSTS_COUNT, 1),
    ("5 Posts", "Create 5 posts", Cat.CONTENT, Req.POSTS_COUNT, 5),
    ("10 Posts", "Create 10 posts", Cat.CONTENT, Req.POSTS_COUNT, 10),
    ("25 Posts", "Create 25 posts", Cat.CONTENT, Req.POSTS_COUNT, 25),
    # Engagement
    ("First Comment", "Leave your first comment", Cat.ENGAGEMENT, Req.COMMENTS_COUNT, 1),
    ("10 Comments", "Leave 10 comments", Cat.ENGAGEMENT, Req.COMMENTS_COUNT, 10),
    ("50 Comments", "Leave 50 comments", Cat.ENGAGEMENT, Req.COMMENTS_COUNT, 50),
    ("200 Comments", "Leave 200 comments", Cat.ENGAGEMENT, Req.COMMENTS_COUNT, 200),
    # Voting
    ("First Upvote", "Gave your first upvote", Cat.VOTING, Req.UPVOTES_GIVEN_COUNT, 1),
    ("25 Upvotes", "Gave 25 upvotes", Cat.VOTING, Req.UPVOTES_GIVEN_COUNT, 25),
    ("100 Upvotes", "Gave 100 upvotes", Cat.VOTING, Req.UPVOTES_GIVEN_COUNT, 100),
    ("500 Upvotes", "Gave 500 upvotes", Cat.VOTING, Req.UPVOTES_GIVEN_COUNT, 500),
    # Reception
    ("First Upvote Received", "Received your first upvote",
     Cat.RECEPTION, Req.UPVOTES_RECEIVED_COUNT, 1),
    ("10 Upvotes Received", "Received 10 upvotes",
     Cat.RECEPTION, Req.UPVOTES_RECEIVED_COUNT, 10),
    ("50 Upvotes Received", "Received 50 upvotes",
     Cat.RECEPTION, Req.UPVOTES_RECEIVED_COUNT, 50),
    ("100 Upvotes Received", "Received 100 upvotes",
     Cat.RECEPTION, Req.UPVOTES_RECEIVED_COUNT, 100),
    # Quality
    ("Insightful", "Created a comment that received 5+ upvotes",
     Cat.QUALITY, Req.COMMENT_MIN_UPVOTES, 5),
    ("Popular", "Created a post that received 10+ upvotes",
     Cat.QUALITY, Req.POST_MIN_UPVOTES, 10),
    ("Trend Setter", "Ranked in the top 5% for reputation this week",
     Cat.QUALITY, Req.TOP_PERCENT_WEEKLY, 5),
]
"""Each entry is ``(name, description, category, requirement, threshold)``."""


# ---------------------------------------------------------------------------
# Seeder
# ---------------------------------------------------------------------------
def seed_default_badges(engine: Engine) -> int:
    """Insert catalogue badges that don't yet exist.  Returns rows inserted."""
    session = Session(engine)
    inserted = 0
    try:
        existing = set(session.scalars(select(Badge.name)).all())
        for name, description, category, requirement, threshold in DEFAULT_BADGES:
            if name in existing:
                continue
            session.add(Badge(
                name=name,
                description=description,
                category=category.value,
                requirement=requirement.value,
                threshold_value=threshold,
                is_active=True,
            ))
            inserted += 1
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if inserted:
        logger.info("Seeded %d default badges.", inserted)
    return inserted
