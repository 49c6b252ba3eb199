"""Configuration management for Switchyard."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from switchyard.constants import (
    DEFAULT_CALL_TIMEOUT_SECONDS,
    DEFAULT_CONCURRENCY,
    DEFAULT_EWMA_ALPHA,
    DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS,
    DEFAULT_HISTORY_SIZE,
    DEFAULT_PROBE_TIMEOUT_SECONDS,
    DEFAULT_RETRY_DELAY_SECONDS,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="",
    )

    # Provider credentials (a provider without a key is never offered)
    anthropic_api_key: SecretStr | None = Field(default=None, description="Anthropic API key")
    openai_api_key: SecretStr | None = Field(default=None, description="OpenAI API key")
    google_api_key: SecretStr | None = Field(default=None, description="Google Gemini API key")
    perplexity_api_key: SecretStr | None = Field(default=None, description="Perplexity API key")
    perplexity_base_url: str = Field(
        default="https://api.perplexity.ai", description="Perplexity API base URL"
    )

    # Default models per provider (task-specific maps take precedence)
    anthropic_model: str = Field(
        default="claude-3-5-sonnet-20241022", description="Default Anthropic model"
    )
    openai_model: str = Field(default="gpt-4o", description="Default OpenAI text model")
    openai_image_model: str = Field(default="dall-e-3", description="OpenAI image model")
    google_model: str = Field(default="gemini-1.5-pro", description="Default Gemini text model")
    google_image_model: str = Field(
        default="imagen-3.0-generate-001", description="Google image model"
    )
    perplexity_model: str = Field(
        default="llama-3.1-sonar-large-128k-online", description="Default Perplexity model"
    )

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    # Logging Configuration
    log_to_file: bool = Field(default=False, description="Enable file-based logging")
    log_directory: str = Field(default="logs", description="Directory for log files")
    log_file_max_bytes: int = Field(
        default=52428800,  # 50MB
        description="Max size per log file before rotation",
    )
    log_file_backup_count: int = Field(
        default=10, description="Number of rotated log files to keep"
    )
    log_file_prefix: str = Field(default="switchyard", description="Prefix for log file names")

    # Health monitoring
    health_check_interval_seconds: float = Field(
        default=DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS,
        description="Seconds between background provider probes",
    )
    health_check_initial_delay_seconds: float = Field(
        default=1.0, description="Delay before the first probe after start-up"
    )
    health_probe_timeout_seconds: float = Field(
        default=DEFAULT_PROBE_TIMEOUT_SECONDS, description="Timeout for a single probe"
    )
    health_ewma_alpha: float = Field(
        default=DEFAULT_EWMA_ALPHA,
        description="Weight of the newest sample in latency/success-rate averages",
    )

    # Dispatch
    provider_call_timeout_seconds: float = Field(
        default=DEFAULT_CALL_TIMEOUT_SECONDS, description="Timeout for a single provider call"
    )
    dispatch_concurrency: int = Field(
        default=DEFAULT_CONCURRENCY, description="Maximum in-flight provider calls per batch"
    )
    dispatch_retry_delay_seconds: float = Field(
        default=DEFAULT_RETRY_DELAY_SECONDS,
        description="Backoff before re-running failed work units",
    )
    image_quality: str = Field(default="high", description="Image quality: 'standard' or 'high'")
    preferred_image_provider: str | None = Field(
        default=None, description="Provider tried first for image batches"
    )

    # Usage / budget
    usage_db_path: str = Field(
        default="data/usage.db", description="SQLite path for persistent usage counters"
    )
    usage_history_size: int = Field(
        default=DEFAULT_HISTORY_SIZE, description="Usage records kept in memory"
    )
    usage_persistence_queue_size: int = Field(
        default=1000, description="Pending counter updates before new ones are dropped"
    )
    budget_warning_pct: float = Field(
        default=90.0, description="Percentage of monthly limit that triggers a warning"
    )

    @field_validator("health_ewma_alpha")
    @classmethod
    def validate_ewma_alpha(cls, v: float) -> float:
        """Validate the smoothing factor is in (0, 1]."""
        if not 0 < v <= 1:
            raise ValueError(f"health_ewma_alpha must be in (0, 1], got: {v}")
        return v

    @field_validator("dispatch_concurrency", "usage_history_size", "usage_persistence_queue_size")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        """Validate sizes and limits are at least 1."""
        if v < 1:
            raise ValueError(f"Value must be at least 1, got: {v}")
        return v

    @field_validator(
        "health_check_interval_seconds",
        "health_probe_timeout_seconds",
        "provider_call_timeout_seconds",
    )
    @classmethod
    def validate_positive_float(cls, v: float) -> float:
        """Validate intervals and timeouts are positive."""
        if v <= 0:
            raise ValueError(f"Value must be positive, got: {v}")
        return v

    @field_validator("budget_warning_pct")
    @classmethod
    def validate_budget_warning_pct(cls, v: float) -> float:
        """Validate budget warning percentage is between 0 and 100."""
        if not 0 <= v <= 100:
            raise ValueError(f"budget_warning_pct must be between 0 and 100, got: {v}")
        return v

    @field_validator("image_quality")
    @classmethod
    def validate_image_quality(cls, v: str) -> str:
        """Validate image quality choice."""
        valid = ["standard", "high"]
        if v not in valid:
            raise ValueError(f"image_quality must be one of {valid}, got: {v}")
        return v

    @property
    def log_file_path(self) -> str:
        """Get the full log file path."""
        return f"{self.log_directory}/{self.log_file_prefix}.log"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
