"""
standing.core — Engine Instance & Service Wiring
================================================

Defines :class:`Standing`, the object a host application holds on to.  It
owns the shared config, DB engine and event bus, and builds every service
on top of them:

1. :class:`~standing.services.streak_service.StreakTracker`
2. :class:`~standing.services.reputation_service.ReputationLedger`
3. :class:`~standing.services.leaderboard_service.LeaderboardEngine`
4. :class:`~standing.services.badge_service.BadgeEngine`
5. :class:`~standing.services.activity_hooks.ActivityHooks`
6. :class:`~standing.services.scheduler.GamificationScheduler`

The host feeds forum events in with :meth:`Standing.publish` and listens
for outbound signals by subscribing to :attr:`Standing.bus`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlalchemy import Engine

from standing.config import StandingConfig
from standing.database.models import utcnow
from standing.services.activity_hooks import ActivityHooks
from standing.services.badge_service import BadgeEngine
from standing.services.event_bus import EventBus
from standing.services.leaderboard_service import LeaderboardEngine
from standing.services.reputation_service import ReputationLedger
from standing.services.scheduler import GamificationScheduler
from standing.services.streak_service import StreakTracker

logger = logging.getLogger(__name__)


class Standing:
    """Carries project-wide state and the wired services.

    Parameters
    ----------
    cfg:
        The parsed :class:`StandingConfig` from ``config.yaml``.
    engine:
        A SQLAlchemy :class:`Engine` with the tables already created.
    clock:
        Source of "now" shared by every service.  Tests pass a fixed clock.
    """

    def __init__(
        self,
        cfg: StandingConfig,
        engine: Engine,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.cfg = cfg
        self.engine = engine
        self.bus = EventBus()

        self.streaks = StreakTracker(engine, self.bus, cfg, clock)
        self.ledger = ReputationLedger(engine, self.bus, clock)
        self.leaderboards = LeaderboardEngine(engine, self.bus, cfg, clock)
        self.badges = BadgeEngine(engine, self.bus, self.leaderboards, cfg, clock)
        self.hooks = ActivityHooks(engine, self.bus, self.streaks, self.ledger, self.badges)
        self.scheduler = GamificationScheduler(
            self.bus, self.streaks, self.ledger, self.leaderboards, self.badges, cfg,
        )
        self.hooks.register()

    async def publish(self, topic: str, payload: dict[str, Any]) -> int:
        """Deliver an inbound forum event (``comment.created`` etc.)."""
        return await self.bus.publish(topic, payload)

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------
    def start(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self.scheduler.start(loop)
        logger.info("%s engine started", self.cfg.community_name)

    def stop(self) -> None:
        self.scheduler.stop()

    async def run_forever(self) -> None:
        """Start the scheduler and park until cancelled."""
        self.start()
        try:
            await asyncio.Event().wait()
        finally:
            self.stop()
