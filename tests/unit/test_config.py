"""Unit tests for configuration management."""

import pytest
from pydantic import ValidationError

from switchyard.config import Settings, get_settings
from switchyard.constants import DEFAULT_CONCURRENCY, DEFAULT_EWMA_ALPHA


class TestSettings:
    """Tests for the Settings model."""

    def test_defaults(self):
        """Test default values without any environment."""
        settings = Settings(_env_file=None)

        assert settings.anthropic_api_key is None
        assert settings.dispatch_concurrency == DEFAULT_CONCURRENCY
        assert settings.health_ewma_alpha == DEFAULT_EWMA_ALPHA
        assert settings.image_quality == "high"
        assert settings.preferred_image_provider is None
        assert settings.budget_warning_pct == 90.0

    def test_api_keys_are_secret(self):
        """Test that keys are wrapped and hidden in repr."""
        settings = Settings(_env_file=None, openai_api_key="sk-secret")

        assert settings.openai_api_key.get_secret_value() == "sk-secret"
        assert "sk-secret" not in repr(settings)

    def test_reads_environment(self, monkeypatch):
        """Test that environment variables override defaults."""
        monkeypatch.setenv("DISPATCH_CONCURRENCY", "7")
        monkeypatch.setenv("PREFERRED_IMAGE_PROVIDER", "openai")

        settings = Settings(_env_file=None)

        assert settings.dispatch_concurrency == 7
        assert settings.preferred_image_provider == "openai"

    def test_empty_env_value_is_none(self, monkeypatch):
        """Test that an empty key in the environment means no key."""
        monkeypatch.setenv("GOOGLE_API_KEY", "")
        assert Settings(_env_file=None).google_api_key is None

    @pytest.mark.parametrize("alpha", [0.0, -0.1, 1.5])
    def test_invalid_ewma_alpha(self, alpha):
        """Test that the smoothing factor must be in (0, 1]."""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, health_ewma_alpha=alpha)

    def test_alpha_of_one_allowed(self):
        """Test the upper bound is inclusive."""
        assert Settings(_env_file=None, health_ewma_alpha=1.0).health_ewma_alpha == 1.0

    @pytest.mark.parametrize(
        "field", ["dispatch_concurrency", "usage_history_size", "usage_persistence_queue_size"]
    )
    def test_sizes_must_be_positive(self, field):
        """Test that sizes below one are rejected."""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **{field: 0})

    @pytest.mark.parametrize(
        "field",
        [
            "health_check_interval_seconds",
            "health_probe_timeout_seconds",
            "provider_call_timeout_seconds",
        ],
    )
    def test_timeouts_must_be_positive(self, field):
        """Test that zero intervals and timeouts are rejected."""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **{field: 0})

    def test_budget_warning_range(self):
        """Test that the warning percentage stays within 0..100."""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, budget_warning_pct=120)

    def test_image_quality_choices(self):
        """Test that only known quality settings are accepted."""
        assert Settings(_env_file=None, image_quality="standard").image_quality == "standard"
        with pytest.raises(ValidationError):
            Settings(_env_file=None, image_quality="ultra")

    def test_log_file_path(self):
        """Test the derived log file path."""
        settings = Settings(_env_file=None, log_directory="/var/log/sy", log_file_prefix="batch")
        assert settings.log_file_path == "/var/log/sy/batch.log"

    def test_is_development(self):
        """Test the development flag is case-insensitive."""
        assert Settings(_env_file=None, environment="Development").is_development
        assert not Settings(_env_file=None).is_development


class TestGetSettings:
    """Tests for the cached settings accessor."""

    def test_cached(self):
        """Test that the same instance is returned."""
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()
