"""
Configuration Management for the Savings Engine

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All tunables of the forecasting heuristics live here,
next to the storage configuration, so a deployment can see every knob
in one place.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets document store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )
    poll_interval_seconds: float = Field(
        default=60.0,
        gt=0,
        description="How often subscriptions poll the spreadsheet for changes"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class EngineSettings(BaseSettings):
    """Allocation and forecasting tunables."""

    model_config = SettingsConfigDict(
        env_prefix="SAVINGS_ENGINE_",
        extra="ignore"
    )

    max_projection_steps: int = Field(
        default=12,
        ge=1,
        le=120,
        description="Maximum number of future income events to project"
    )
    moving_average_periods: int = Field(
        default=3,
        ge=1,
        description="Number of recent income events in the forecast basis"
    )
    default_horizon_days: int = Field(
        default=365,
        ge=1,
        description="Projection horizon when a plan has no target date"
    )
    neutral_health_score: int = Field(
        default=50,
        ge=0,
        le=100,
        description="Score returned when health scoring fails"
    )
    audit_collection: str = Field(
        default="auditLog",
        description="Store collection for persisted audit events"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    use_google_sheets: bool = Field(
        default=False,
        description="Back the engine with Google Sheets instead of memory"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Note: These are loaded lazily to allow partial configuration

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def engine(self) -> EngineSettings:
        return EngineSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("google_sheets", "engine", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
