"""Tests for application configuration."""

import pytest
from pydantic import ValidationError

from src.config import Backend, Environment, Settings, get_settings

SECURE = {
    "jwt_secret": "a-long-random-value-from-the-vault",
    "litellm_api_key": "sk-live-abc123",
    "database_url": "postgresql+asyncpg://deck:Zq81-kLm@db:5432/deck_generator",
}


class TestSettings:
    """Test Settings model and validation."""

    def test_default_settings_load_correctly(self):
        settings = Settings()

        assert settings.environment == Environment.DEV
        assert settings.debug is True  # Auto-set from DEV environment
        assert settings.storage_backend == Backend.SQL
        assert settings.outline_max_attempts == 3
        assert settings.image_max_attempts == 2
        assert settings.max_repair_attempts == 2
        assert settings.worker_enabled is True
        assert settings.worker_lease_seconds == 30.0

    def test_production_rejects_default_secrets(self):
        with pytest.raises(RuntimeError) as exc_info:
            Settings(environment=Environment.PROD)

        message = str(exc_info.value)
        assert "PRODUCTION STARTUP BLOCKED" in message
        assert "JWT_SECRET" in message
        assert "LITELLM_API_KEY" in message
        assert "DATABASE_URL" in message

    def test_production_rejects_fake_llm(self):
        with pytest.raises(RuntimeError, match="FAKE_LLM"):
            Settings(environment=Environment.PROD, fake_llm=True, **SECURE)

    def test_production_accepts_real_secrets(self):
        settings = Settings(environment=Environment.PROD, **SECURE)

        assert settings.is_prod is True
        assert settings.is_dev is False
        assert settings.debug is False

    def test_test_environment_counts_as_dev(self):
        settings = Settings(environment=Environment.TEST)
        assert settings.is_dev is True
        assert settings.is_prod is False

    def test_backends_from_strings(self):
        settings = Settings(storage_backend="memory", event_bus_backend="memory")
        assert settings.storage_backend == Backend.MEMORY
        assert settings.event_bus_backend == Backend.MEMORY

    @pytest.mark.parametrize(
        "overrides",
        [
            {"outline_max_attempts": 0},
            {"stream_buffer_size": 4},
            {"background_worker_concurrency": 0},
            {"background_worker_concurrency": 100},
            {"model_timeout_seconds": 0},
            {"storage_backend": "mongo"},
            {"worker_lease_seconds": 0},
            {"worker_error_backoff_seconds": -1},
        ],
    )
    def test_bounds_are_validated(self, overrides):
        with pytest.raises(ValidationError):
            Settings(**overrides)

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("FAKE_LLM", "true")
        monkeypatch.setenv("JOB_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("WORKER_ENABLED", "false")

        settings = Settings()

        assert settings.fake_llm is True
        assert settings.job_max_attempts == 5
        assert settings.worker_enabled is False

    def test_get_settings_returns_singleton(self):
        assert get_settings() is get_settings()
