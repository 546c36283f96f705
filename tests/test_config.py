"""
tests/test_config.py — Unit Tests for the YAML Configuration Loader
====================================================================
"""

from __future__ import annotations

import pytest

from standing.config import StandingConfig, load_config


class TestLoadConfig:
    def test_reads_values(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "community_name: Test Forum\n"
            "at_risk_hour: 18\n"
            "risk_sweep_hours: [17, 18, 19]\n"
            "badge_sweep_minutes: 5\n"
            "scheduler_enabled: false\n",
            encoding="utf-8",
        )

        cfg = load_config(path)

        assert cfg.community_name == "Test Forum"
        assert cfg.at_risk_hour == 18
        assert cfg.risk_sweep_hours == (17, 18, 19)
        assert cfg.badge_sweep_minutes == 5
        assert cfg.scheduler_enabled is False
        assert cfg.leaderboard_max_page_size == 100

    def test_risk_sweep_starts_at_at_risk_hour(self, tmp_path):
        assert StandingConfig.defaults().risk_sweep_hours == (20, 21, 22, 23)

        path = tmp_path / "config.yaml"
        path.write_text("at_risk_hour: 21\nrisk_sweep_hours: []\n", encoding="utf-8")
        assert load_config(path).risk_sweep_hours == (21, 22, 23)

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")
        assert load_config(path) == StandingConfig.defaults()

    def test_missing_file_has_hint(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="config.yaml.example"):
            load_config(tmp_path / "nope.yaml")

    @pytest.mark.parametrize("body", [
        "at_risk_hour: 24\n",
        "risk_sweep_hours: [22, 25]\n",
        "badge_sweep_minutes: 0\n",
        "badge_check_cooldown_seconds: -1\n",
        "leaderboard_min_page_size: 50\nleaderboard_max_page_size: 10\n",
    ])
    def test_invalid_values_rejected(self, tmp_path, body):
        path = tmp_path / "config.yaml"
        path.write_text(body, encoding="utf-8")
        with pytest.raises(ValueError):
            load_config(path)

    def test_config_is_frozen(self):
        cfg = StandingConfig.defaults()
        with pytest.raises(AttributeError):
            cfg.at_risk_hour = 3
