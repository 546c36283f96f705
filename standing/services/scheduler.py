"""
standing.services.scheduler — Periodic Gamification Jobs
=========================================================

Runs the engine's sweeps on an APScheduler ``AsyncIOScheduler``:

    streak_risk              hourly at :00, during ``risk_sweep_hours`` only
    streak_break             daily 00:01 UTC
    weekly_decay             Monday 00:00 UTC
    leaderboard_recompute    daily 00:00 UTC
    leaderboard_weekly       Monday 00:05 UTC
    badge_periodic           every ``badge_sweep_minutes``
    badge_weekly_percentile  Monday 00:01 UTC

Every job is also callable directly as ``await scheduler.run_<job>()``.

Each job is single-flight within this process: an invocation that starts
while the same job is still running logs a warning and returns None
instead of queueing.  Scheduled runs are additionally coalesced, so a
burst of missed fire times runs once.  The flags are in-memory, so two
processes running the scheduler against one database will both run every
job.

The at-risk sweep signals every streak still at risk on each run, so a
user gets one reminder per hour in ``risk_sweep_hours`` until they act.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import TYPE_CHECKING, Any, TypeVar

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from standing.config import StandingConfig
from standing.engine.events import Signal

if TYPE_CHECKING:
    from standing.services.badge_service import BadgeEngine, PercentileSummary
    from standing.services.event_bus import EventBus
    from standing.services.leaderboard_service import (
        ChangeSummary,
        LeaderboardEngine,
        RecomputeSummary,
    )
    from standing.services.reputation_service import DecaySummary, ReputationLedger
    from standing.services.streak_service import StreakTracker

logger = logging.getLogger(__name__)

T = TypeVar("T")

TIMEZONE = "UTC"

# Shared by every scheduled job
JOB_DEFAULTS = {
    "coalesce": True,
    "max_instances": 1,
    "misfire_grace_time": 300,
}


class GamificationScheduler:
    """Owns the periodic jobs and their single-flight flags."""

    def __init__(
        self,
        bus: EventBus,
        streaks: StreakTracker,
        ledger: ReputationLedger,
        leaderboards: LeaderboardEngine,
        badges: BadgeEngine,
        config: StandingConfig | None = None,
    ) -> None:
        self.bus = bus
        self.streaks = streaks
        self.ledger = ledger
        self.leaderboards = leaderboards
        self.badges = badges
        self.config = config or StandingConfig.defaults()
        self._running: dict[str, bool] = {}
        self._scheduler: AsyncIOScheduler | None = None

    # ------------------------------------------------------------------
    # Single-flight guard
    # ------------------------------------------------------------------
    def is_running(self, job: str) -> bool:
        return self._running.get(job, False)

    async def _single_flight(self, job: str, body: Callable[[], Awaitable[T]]) -> T | None:
        if self._running.get(job):
            logger.warning("Job %s is still running; skipping this invocation", job)
            return None
        self._running[job] = True
        try:
            return await body()
        finally:
            self._running[job] = False

    # ------------------------------------------------------------------
    # Streak sweeps
    # ------------------------------------------------------------------
    async def _streak_risk(self) -> dict[str, int]:
        start = time.monotonic()
        candidates = await self.streaks.get_at_risk_streaks()
        notified = failed = 0
        for state in candidates:
            try:
                if not await self.streaks.is_at_risk(state.user_id):
                    continue
                await self.bus.publish(Signal.STREAK_AT_RISK, {
                    "user_id": state.user_id,
                    "current_streak": state.current_streak,
                })
                notified += 1
            except Exception:
                failed += 1
                logger.exception("At-risk check failed for user %s", state.user_id)
        summary = {"checked": len(candidates), "notified": notified, "failed": failed}
        logger.info(
            "Streak risk sweep done in %dms: %s",
            int((time.monotonic() - start) * 1000), summary,
        )
        return summary

    async def run_streak_risk(self) -> dict[str, int] | None:
        return await self._single_flight("streak_risk", self._streak_risk)

    async def _streak_break(self) -> dict[str, int]:
        start = time.monotonic()
        lapsed = await self.streaks.get_lapsed_streaks()
        reset = skipped = failed = 0
        for state in lapsed:
            try:
                previous = await self.streaks.reset_streak(state.user_id)
                if previous is None:
                    skipped += 1
                    continue
                reset += 1
                await self.bus.publish(Signal.STREAK_BROKEN, {
                    "user_id": state.user_id,
                    "previous_streak": previous,
                })
            except Exception:
                failed += 1
                logger.exception("Streak reset failed for user %s", state.user_id)
        summary = {"checked": len(lapsed), "reset": reset, "skipped": skipped, "failed": failed}
        logger.info(
            "Streak break sweep done in %dms: %s",
            int((time.monotonic() - start) * 1000), summary,
        )
        return summary

    async def run_streak_break(self) -> dict[str, int] | None:
        return await self._single_flight("streak_break", self._streak_break)

    # ------------------------------------------------------------------
    # Reputation + leaderboards
    # ------------------------------------------------------------------
    async def run_weekly_decay(self) -> DecaySummary | None:
        return await self._single_flight("weekly_decay", self.ledger.apply_weekly_decay)

    async def run_leaderboard_recompute(self) -> RecomputeSummary | None:
        return await self._single_flight(
            "leaderboard_recompute", self.leaderboards.recompute_all,
        )

    async def _leaderboard_weekly(self) -> tuple[ChangeSummary, int]:
        changes = await self.leaderboards.notify_significant_changes()
        snapshotted = await self.leaderboards.snapshot_previous_ranks()
        return changes, snapshotted

    async def run_leaderboard_weekly(self) -> tuple[ChangeSummary, int] | None:
        """Notify significant moves, then snapshot weekly ranks for next week."""
        return await self._single_flight("leaderboard_weekly", self._leaderboard_weekly)

    # ------------------------------------------------------------------
    # Badge sweeps
    # ------------------------------------------------------------------
    async def _badge_periodic(self) -> dict[str, int]:
        start = time.monotonic()
        window = timedelta(minutes=self.config.badge_active_window_minutes)
        user_ids = await self.streaks.get_recently_active_user_ids(window)
        awarded = failed = 0
        for user_id in user_ids:
            try:
                awarded += len(await self.badges.check_all_user_badges(user_id))
            except Exception:
                failed += 1
                logger.exception("Periodic badge check failed for user %s", user_id)
        summary = {"processed": len(user_ids), "awarded": awarded, "failed": failed}
        logger.info(
            "Periodic badge sweep done in %dms: %s",
            int((time.monotonic() - start) * 1000), summary,
        )
        return summary

    async def run_badge_periodic(self) -> dict[str, int] | None:
        return await self._single_flight("badge_periodic", self._badge_periodic)

    async def run_badge_weekly_percentile(self) -> PercentileSummary | None:
        return await self._single_flight(
            "badge_weekly_percentile", self.badges.check_weekly_percent_badges,
        )

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    def job_table(self) -> list[tuple[str, Callable[[], Awaitable[Any]], BaseTrigger]]:
        """``(job name, coroutine function, trigger)`` for every scheduled job."""
        risk_hours = ",".join(str(h) for h in sorted(set(self.config.risk_sweep_hours)))
        return [
            ("streak_risk", self.run_streak_risk,
             CronTrigger(hour=risk_hours, minute=0, timezone=TIMEZONE)),
            ("streak_break", self.run_streak_break,
             CronTrigger(hour=0, minute=1, timezone=TIMEZONE)),
            ("weekly_decay", self.run_weekly_decay,
             CronTrigger(day_of_week="mon", hour=0, minute=0, timezone=TIMEZONE)),
            ("leaderboard_recompute", self.run_leaderboard_recompute,
             CronTrigger(hour=0, minute=0, timezone=TIMEZONE)),
            ("leaderboard_weekly", self.run_leaderboard_weekly,
             CronTrigger(day_of_week="mon", hour=0, minute=5, timezone=TIMEZONE)),
            ("badge_periodic", self.run_badge_periodic,
             IntervalTrigger(minutes=self.config.badge_sweep_minutes, timezone=TIMEZONE)),
            ("badge_weekly_percentile", self.run_badge_weekly_percentile,
             CronTrigger(day_of_week="mon", hour=0, minute=1, timezone=TIMEZONE)),
        ]

    async def _run_scheduled(self, job: str, run: Callable[[], Awaitable[Any]]) -> None:
        try:
            await run()
        except Exception:
            logger.exception("Scheduled job %s failed", job)

    def start(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Schedule every job on *loop* (default: the running loop)."""
        if not self.config.scheduler_enabled:
            logger.info("Scheduler disabled by config")
            return
        if self._scheduler is not None:
            return

        scheduler = AsyncIOScheduler(
            event_loop=loop or asyncio.get_running_loop(),
            timezone=TIMEZONE,
            job_defaults=JOB_DEFAULTS,
        )
        for job, run, trigger in self.job_table():
            scheduler.add_job(
                self._run_scheduled, trigger, args=(job, run), id=job, name=job,
            )
        scheduler.start()
        self._scheduler = scheduler
        logger.info("Scheduler started with %d jobs", len(scheduler.get_jobs()))

    def stop(self) -> None:
        """Shut the scheduler down without waiting for running jobs."""
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Scheduler stopped")

    @property
    def job_names(self) -> list[str]:
        if self._scheduler is None:
            return []
        return [job.id for job in self._scheduler.get_jobs()]
