"""
Standing — Gamification & Reputation Engine for a Token Discussion Forum
==========================================================================
Turns raw forum actions (posting, commenting, voting, logging in) into
durable state: daily activity streaks, decaying reputation scores, badge
awards, and multi-category leaderboards with rank-change detection.

Package layout::

    standing/
    ├── __main__.py        # python -m standing (runs the scheduler)
    ├── core.py            # Standing: wires bus + services together
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Point tables, milestones, caps, thresholds
    ├── errors.py          # Typed errors surfaced to callers
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # All ORM models (8 tables)
    │   └── seed.py        # Default badge catalogue
    ├── engine/
    │   ├── events.py      # Inbound event payloads + outbound signal names
    │   ├── streaks.py     # Daily streak state machine
    │   ├── reputation.py  # Point awards, milestones, weekly decay
    │   ├── badges.py      # Badge requirement predicate table
    │   └── leaderboard.py # Ranking + change detection
    └── services/
        ├── event_bus.py           # In-process publish/subscribe
        ├── streak_service.py      # Streak Tracker
        ├── reputation_service.py  # Reputation Ledger
        ├── badge_service.py       # Badge Engine
        ├── leaderboard_service.py # Leaderboard Engine
        ├── activity_hooks.py      # Inbound event → engine wiring
        └── scheduler.py           # Single-flight periodic jobs
"""

__version__ = "0.1.0"
