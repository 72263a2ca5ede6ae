"""Tests for configuration and the clock collaborator."""

from datetime import datetime, timezone

import pytest

from conftest import NOW, monthly_income
from savings_engine.config import EngineSettings, get_settings, validate_all_settings
from savings_engine.models.plan import Plan
from savings_engine.projection import ProjectionEngine
from savings_engine.services.clock import FixedClock, SystemClock


class TestEngineSettings:

    def test_defaults(self, monkeypatch):
        for name in ("MAX_PROJECTION_STEPS", "MOVING_AVERAGE_PERIODS", "DEFAULT_HORIZON_DAYS"):
            monkeypatch.delenv(f"SAVINGS_ENGINE_{name}", raising=False)
        settings = EngineSettings()
        assert settings.max_projection_steps == 12
        assert settings.moving_average_periods == 3
        assert settings.default_horizon_days == 365
        assert settings.neutral_health_score == 50

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("SAVINGS_ENGINE_MAX_PROJECTION_STEPS", "6")
        assert EngineSettings().max_projection_steps == 6

    def test_projection_respects_step_limit(self):
        plan = Plan(
            id="plan-1",
            user_id="user-1",
            plan_name="Car",
            percentage_of_income=10,
            created_at=NOW,
            updated_at=NOW,
        )
        engine = ProjectionEngine(FixedClock(NOW), EngineSettings(max_projection_steps=3))
        assert len(engine.generate_projections(plan, [], monthly_income()).projections) == 3

    def test_validate_all_settings_reports_missing_sheets_config(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_SHEETS_CREDENTIALS_PATH", raising=False)
        monkeypatch.delenv("GOOGLE_SHEETS_SPREADSHEET_ID", raising=False)
        get_settings.cache_clear()

        results = validate_all_settings()

        assert results["engine"] is True
        assert results["app"] is True
        assert results["google_sheets"] is False
        assert "google_sheets_error" in results


class TestClocks:

    def test_system_clock_is_utc(self):
        assert SystemClock().now().tzinfo == timezone.utc

    def test_fixed_clock(self):
        clock = FixedClock(NOW)
        assert clock.now() == NOW
        assert clock.advance(days=2) == datetime(2025, 1, 17, 12, 0, tzinfo=timezone.utc)
        clock.set(datetime(2030, 1, 1))
        assert clock.now() == datetime(2030, 1, 1, tzinfo=timezone.utc)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
