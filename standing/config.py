"""
standing.config — YAML Configuration Loader
============================================

Reads ``config.yaml`` for scheduling and tuning knobs that operators may
want to change without a deploy (sweep cadences, at-risk hour, paging
bounds).  Connection strings stay in the environment (``.env``).

Game rules themselves (point weights, milestones, decay caps) are fixed
and live in :mod:`standing.constants`.

Usage::

    from standing.config import load_config

    cfg = load_config()               # reads ./config.yaml by default
    print(cfg.badge_sweep_minutes)    # 15
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class StandingConfig:
    """Immutable configuration loaded from ``config.yaml``.

    Every field has a default so an empty file (or
    :meth:`StandingConfig.defaults`) yields a working engine.
    """

    # Identity
    community_name: str = "Standing"

    # Streaks
    at_risk_hour: int = 20  # UTC hour from which yesterday-only streaks are at risk
    # Empty means every hour from at_risk_hour to the end of the day
    risk_sweep_hours: tuple[int, ...] = ()

    # Badges
    badge_sweep_minutes: int = 15
    badge_active_window_minutes: int = 60
    badge_check_cooldown_seconds: int = 60

    # Leaderboards
    leaderboard_min_page_size: int = 5
    leaderboard_max_page_size: int = 100

    # Scheduler
    scheduler_enabled: bool = True

    def __post_init__(self) -> None:
        if not self.risk_sweep_hours:
            object.__setattr__(
                self, "risk_sweep_hours", tuple(range(self.at_risk_hour, 24)),
            )

    @classmethod
    def defaults(cls) -> StandingConfig:
        return cls()


def _validate(cfg: StandingConfig) -> StandingConfig:
    if not 0 <= cfg.at_risk_hour <= 23:
        raise ValueError(f"at_risk_hour must be 0-23, got {cfg.at_risk_hour}")
    bad_hours = [h for h in cfg.risk_sweep_hours if not 0 <= h <= 23]
    if bad_hours:
        raise ValueError(f"risk_sweep_hours contains invalid hours: {bad_hours}")
    if cfg.badge_sweep_minutes <= 0:
        raise ValueError("badge_sweep_minutes must be positive")
    if cfg.badge_active_window_minutes <= 0:
        raise ValueError("badge_active_window_minutes must be positive")
    if cfg.badge_check_cooldown_seconds < 0:
        raise ValueError("badge_check_cooldown_seconds cannot be negative")
    if not 1 <= cfg.leaderboard_min_page_size <= cfg.leaderboard_max_page_size:
        raise ValueError(
            "leaderboard page size bounds must satisfy 1 <= min <= max "
            f"(got {cfg.leaderboard_min_page_size}..{cfg.leaderboard_max_page_size})"
        )
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> StandingConfig:
    """Read *path* and return a :class:`StandingConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If a value is out of range.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    base = StandingConfig.defaults()
    cfg = StandingConfig(
        community_name=str(raw.get("community_name", base.community_name)),
        at_risk_hour=int(raw.get("at_risk_hour", base.at_risk_hour)),
        risk_sweep_hours=tuple(
            int(h) for h in raw.get("risk_sweep_hours") or ()
        ),
        badge_sweep_minutes=int(
            raw.get("badge_sweep_minutes", base.badge_sweep_minutes)
        ),
        badge_active_window_minutes=int(
            raw.get("badge_active_window_minutes", base.badge_active_window_minutes)
        ),
        badge_check_cooldown_seconds=int(
            raw.get("badge_check_cooldown_seconds", base.badge_check_cooldown_seconds)
        ),
        leaderboard_min_page_size=int(
            raw.get("leaderboard_min_page_size", base.leaderboard_min_page_size)
        ),
        leaderboard_max_page_size=int(
            raw.get("leaderboard_max_page_size", base.leaderboard_max_page_size)
        ),
        scheduler_enabled=bool(raw.get("scheduler_enabled", base.scheduler_enabled)),
    )
    return _validate(cfg)
