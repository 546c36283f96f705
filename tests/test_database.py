"""
tests/test_database.py — Tests for Engine Helpers and Badge Seeding
====================================================================
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from sqlalchemy import func, select

from standing.database.engine import as_utc, create_db_engine, get_session, init_db
from standing.database.models import Badge, BadgeRequirement, UserStreak
from standing.database.seed import DEFAULT_BADGES, seed_default_badges


class TestSeed:
    def test_seed_is_idempotent(self, db_engine, db_session):
        assert seed_default_badges(db_engine) == len(DEFAULT_BADGES)
        assert seed_default_badges(db_engine) == 0
        assert db_session.scalar(select(func.count()).select_from(Badge)) == len(DEFAULT_BADGES)

    def test_admin_edits_survive_reseed(self, db_engine, db_session):
        seed_default_badges(db_engine)
        badge = db_session.scalar(select(Badge).where(Badge.name == "Insightful"))
        badge.threshold_value = 8
        db_session.commit()

        seed_default_badges(db_engine)

        db_session.refresh(badge)
        assert badge.threshold_value == 8

    def test_catalogue_uses_known_requirements(self):
        known = {r.value for r in BadgeRequirement}
        assert all(req.value in known for _, _, _, req, _ in DEFAULT_BADGES)
        assert len({name for name, *_ in DEFAULT_BADGES}) == len(DEFAULT_BADGES)

    def test_init_db_creates_and_seeds(self, db_engine, db_session):
        init_db(db_engine)
        assert db_session.scalar(select(func.count()).select_from(Badge)) == len(DEFAULT_BADGES)


class TestEngineHelpers:
    def test_missing_database_url(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(RuntimeError, match="DATABASE_URL"):
            create_db_engine()

    def test_get_session_rolls_back_on_error(self, db_engine, db_session):
        with pytest.raises(RuntimeError):
            with get_session(db_engine) as session:
                session.add(UserStreak(user_id="u1"))
                session.flush()
                raise RuntimeError("abort")
        assert db_session.get(UserStreak, "u1") is None

    def test_as_utc(self):
        naive = datetime(2026, 3, 4, 12, 0)
        assert as_utc(naive).tzinfo is UTC
        aware = datetime(2026, 3, 4, 12, 0, tzinfo=UTC)
        assert as_utc(aware) is aware
        assert as_utc(None) is None
