"""
Configuration Management for Penny Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Engines receive settings through their constructors, so tests can pass
their own instances instead of touching the environment.
"""

from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Embedded SQLite database configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PENNY_DB_",
        extra="ignore"
    )

    path: str = Field(
        default="penny.db",
        description="Path to the SQLite database file (':memory:' for tests)"
    )
    timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="How long to wait on a locked database file"
    )
    foreign_keys: bool = Field(
        default=True,
        description="Enforce foreign keys (off only to load partial legacy data)"
    )


class BudgetSettings(BaseSettings):
    """Budget status thresholds (percent of budget spent)."""

    model_config = SettingsConfigDict(
        env_prefix="PENNY_BUDGET_",
        extra="ignore"
    )

    warning_threshold: float = Field(
        default=70.0,
        ge=0.0,
        le=100.0,
        description="Percentage at which a budget turns 'warning'"
    )
    danger_threshold: float = Field(
        default=90.0,
        ge=0.0,
        le=100.0,
        description="Percentage at which a budget turns 'danger'"
    )

    @model_validator(mode='after')
    def validate_threshold_order(self) -> 'BudgetSettings':
        if self.warning_threshold >= self.danger_threshold:
            raise ValueError("Warning threshold must be below danger threshold")
        return self


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
    log_level: str = Field(
        default="INFO",
        description="Minimum level for structured logs"
    )

    default_currency: str = Field(
        default="USD",
        min_length=3,
        max_length=3,
        description="Currency for new accounts when none is given"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator('default_currency')
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


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

    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

    @property
    def budgets(self) -> BudgetSettings:
        return BudgetSettings()

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

    Returns a dict of {setting_name: is_valid}, plus
    {setting_name}_error entries for the failures.
    """
    results = {}

    settings = get_settings()

    for name in ("database", "budgets", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
