"""
Configuration management for tokenwise.

Supports environment variables, .env files, and YAML configuration.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderSettings(BaseSettings):
    """Settings for the generation provider's credentials and endpoint."""

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    anthropic_api_key: SecretStr | None = Field(default=None, alias="ANTHROPIC_API_KEY")
    anthropic_base_url: str = Field(
        default="https://api.anthropic.com",
        alias="ANTHROPIC_BASE_URL"
    )

    @property
    def has_anthropic(self) -> bool:
        """Check if Anthropic is configured."""
        return self.anthropic_api_key is not None


class OptimizerSettings(BaseSettings):
    """Core optimizer settings."""

    model_config = SettingsConfigDict(
        env_prefix="TOKENWISE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Model that savings are measured against
    baseline_model: str = "claude-sonnet-4-5-20250929"

    # Execution settings
    default_timeout: float = 120.0
    max_retries: int = 3
    retry_delay: float = 1.0
    default_max_output_tokens: int = 4096

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v


class SchedulerSettings(BaseSettings):
    """Batch scheduler limits."""

    model_config = SettingsConfigDict(
        env_prefix="TOKENWISE_SCHEDULER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    max_concurrency: int = Field(default=5, ge=1)
    cost_budget: float = Field(default=50.0, ge=0)
    tick_interval_seconds: float = Field(default=1.0, gt=0)
    result_timeout_seconds: float = Field(default=30.0, gt=0)
    max_retained_outcomes: int = Field(default=10_000, ge=1)


class CacheSettings(BaseSettings):
    """Response cache settings."""

    model_config = SettingsConfigDict(
        env_prefix="TOKENWISE_CACHE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    enabled: bool = True
    ttl_seconds: int = Field(default=3600, gt=0)
    max_entries: int = Field(default=1000, ge=1)
    sweep_interval_seconds: float = Field(default=60.0, gt=0)


class BudgetSettings(BaseSettings):
    """Budget and cost analytics defaults."""

    model_config = SettingsConfigDict(
        env_prefix="TOKENWISE_BUDGET_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    default_monthly_budget_usd: float = 100.0
    warning_threshold: float = Field(default=0.8, gt=0, le=1)
    critical_threshold: float = Field(default=0.95, gt=0, le=1)
    max_entries_per_caller: int = Field(default=10_000, ge=1)
    max_alerts: int = Field(default=100, ge=1)
    hard_limit: bool = False  # If True, over-budget callers are held in the queue


class Settings(BaseSettings):
    """Combined application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    providers: ProviderSettings = Field(default_factory=ProviderSettings)
    optimizer: OptimizerSettings = Field(default_factory=OptimizerSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    budget: BudgetSettings = Field(default_factory=BudgetSettings)

    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        import yaml

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()


def reload_settings() -> Settings:
    """Reload settings (clears cache)."""
    get_settings.cache_clear()
    return get_settings()
