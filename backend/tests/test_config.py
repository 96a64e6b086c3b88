"""
Tests for application settings loaded from APP_ environment variables.
"""

import pytest
from pydantic import ValidationError

from storefront.core.config import Settings, get_settings


# ============================================================================
# Unit Tests - Settings
# ============================================================================


class TestSettings:
    """Tests for Settings validation."""

    def test_environment_prefix(self, monkeypatch):
        """Test that settings are read from APP_ variables."""
        monkeypatch.setenv("APP_PENDING_ORDER_BATCH_SIZE", "25")
        monkeypatch.setenv("APP_STRIPE_SECRET_KEY", "sk_test_env")

        settings = Settings()

        assert settings.pending_order_batch_size == 25
        assert settings.stripe_secret_key == "sk_test_env"

    def test_default_secret_rejected_in_production(self):
        """Test that production refuses the development secret key."""
        with pytest.raises(ValidationError):
            Settings(environment="production", secret_key="dev-secret-key-change-in-production")

    def test_custom_secret_accepted_in_production(self):
        """Test that a real secret key passes in production."""
        settings = Settings(environment="production", secret_key="x" * 48)

        assert settings.is_production is True

    @pytest.mark.parametrize(
        "url",
        [
            "postgresql://u:p@db/store",
            "postgresql+asyncpg://u:p@db/store",
            "sqlite+aiosqlite://",
        ],
    )
    def test_supported_database_urls(self, url):
        """Test accepted database URL schemes."""
        assert Settings(database_url=url).database_url == url

    def test_unsupported_database_url(self):
        """Test that other database schemes are rejected."""
        with pytest.raises(ValidationError):
            Settings(database_url="mysql://u:p@db/store")

    def test_worker_urls(self):
        """Test broker URL validation."""
        assert Settings(celery_broker_url="memory://").celery_broker_url == "memory://"
        with pytest.raises(ValidationError):
            Settings(celery_broker_url="amqp://guest@rabbit//")

    def test_cors_origins_from_comma_string(self):
        """Test parsing a comma separated origin list."""
        settings = Settings(cors_origins="https://a.test, https://b.test,")

        assert settings.cors_origins == ["https://a.test", "https://b.test"]

    def test_sweep_bounds(self):
        """Test numeric bounds on the sweep configuration."""
        with pytest.raises(ValidationError):
            Settings(pending_order_batch_size=0)
        with pytest.raises(ValidationError):
            Settings(pending_order_sweep_interval_seconds=5)

    def test_get_settings_is_cached(self):
        """Test that settings are loaded once per process."""
        assert get_settings() is get_settings()
        assert get_settings().is_test is True
