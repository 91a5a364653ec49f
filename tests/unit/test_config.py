"""Unit tests for configuration module."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from src.core.config import Settings, get_settings


class TestSettings:
    """Tests for Settings class."""

    def test_settings_loads_from_environment(self) -> None:
        """Test that Settings loads values from environment variables."""
        env_vars = {
            "APP_NAME": "test-app",
            "APP_ENV": "testing",
            "DEBUG": "true",
            "HOST": "127.0.0.1",
            "PORT": "9000",
            "CHECKOUT_API_URL": "http://checkout.internal/api/v1/checkout",
            "RETRY_MAX_ATTEMPTS": "5",
            "RETRY_BASE_DELAY_MS": "250",
        }

        with patch.dict(os.environ, env_vars, clear=False):
            settings = Settings()

            assert settings.app_name == "test-app"
            assert settings.app_env == "testing"
            assert settings.debug is True
            assert settings.host == "127.0.0.1"
            assert settings.port == 9000
            assert settings.checkout_api_url == "http://checkout.internal/api/v1/checkout"
            assert settings.retry_max_attempts == 5
            assert settings.retry_base_delay_ms == 250

    def test_settings_cors_origins_list(self) -> None:
        """Test that CORS origins are correctly parsed into a list."""
        env_vars = {"CORS_ORIGINS": "http://localhost:3000, http://example.com , http://test.com"}

        with patch.dict(os.environ, env_vars, clear=False):
            origins = Settings().cors_origins_list

            assert origins == ["http://localhost:3000", "http://example.com", "http://test.com"]

    def test_settings_jwt_algorithms_list(self) -> None:
        """Test that accepted algorithms are split and trimmed."""
        with patch.dict(os.environ, {"JWT_ALGORITHMS": "ES256, HS256"}, clear=False):
            assert Settings().jwt_algorithms_list == ["ES256", "HS256"]

    def test_settings_is_production_property(self) -> None:
        """Test the is_production property."""
        with patch.dict(os.environ, {"APP_ENV": "production"}, clear=False):
            assert Settings().is_production is True

        with patch.dict(os.environ, {"APP_ENV": "development"}, clear=False):
            assert Settings().is_production is False

    def test_login_url_joins_frontend_and_path(self) -> None:
        """Test that the login URL does not double the slash."""
        env_vars = {"FRONTEND_URL": "https://shop.example.com/", "LOGIN_PATH": "/login?redirect=/checkout"}

        with patch.dict(os.environ, env_vars, clear=False):
            assert Settings().login_url == "https://shop.example.com/login?redirect=/checkout"

    def test_stripe_configured_only_with_key(self) -> None:
        """Test that Stripe is considered configured only when a key is set."""
        with patch.dict(os.environ, {"STRIPE_SECRET_KEY": ""}, clear=False):
            assert Settings().is_stripe_configured is False

        with patch.dict(os.environ, {"STRIPE_SECRET_KEY": "sk_test_123"}, clear=False):
            assert Settings().is_stripe_configured is True

    def test_supabase_backend_requires_credentials(self) -> None:
        """Test that the supabase backend cannot start without credentials."""
        env_vars = {"CHECKOUT_STORAGE_BACKEND": "supabase", "SUPABASE_URL": "", "SUPABASE_SECRET_KEY": ""}

        with patch.dict(os.environ, env_vars, clear=False):
            with pytest.raises(ValidationError):
                Settings()

    def test_unknown_storage_backend_rejected(self) -> None:
        """Test that only known storage backends are accepted."""
        with patch.dict(os.environ, {"CHECKOUT_STORAGE_BACKEND": "redis"}, clear=False):
            with pytest.raises(ValidationError):
                Settings()

    def test_negative_delays_rejected(self) -> None:
        """Test that timing settings must not be negative."""
        with patch.dict(os.environ, {"PERSIST_DEBOUNCE_MS": "-1"}, clear=False):
            with pytest.raises(ValidationError):
                Settings()


class TestGetSettings:
    """Tests for get_settings function."""

    def test_get_settings_returns_cached_instance(self) -> None:
        """Test that get_settings returns the same cached instance."""
        get_settings.cache_clear()

        settings1 = get_settings()
        settings2 = get_settings()

        assert settings1 is settings2

        get_settings.cache_clear()
