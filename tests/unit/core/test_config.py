"""
Unit tests for settings validation, session tokens and tracing bootstrap.
"""

import pytest
from pydantic import ValidationError

from pdv.core.config import Settings
from pdv.core.security import username_from_token
from pdv.core.telemetry import init_tracing, shutdown_tracing


class TestSettings:
    """Test environment-driven settings."""

    def test_cache_backend_is_normalized(self):
        assert Settings(CACHE_BACKEND="Redis").CACHE_BACKEND == "redis"

    def test_unknown_cache_backend(self):
        with pytest.raises(ValidationError):
            Settings(CACHE_BACKEND="memcached")

    def test_sync_database_driver_is_rejected(self):
        with pytest.raises(ValidationError):
            Settings(DATABASE_URL="postgresql://pdv@localhost/pdv")

    def test_cors_origins_list(self):
        settings = Settings(CORS_ORIGINS="http://a.test, http://b.test,")

        assert settings.cors_origins_list == ["http://a.test", "http://b.test"]

    def test_production_flag(self):
        assert Settings(ENVIRONMENT="production").is_production is True
        assert Settings(ENVIRONMENT="test").is_production is False


class TestSessionToken:
    """Test username extraction from the auth cookie."""

    @pytest.mark.parametrize(
        "token, expected",
        [
            ("alice_1700000000000", "alice"),
            ("alice", "alice"),
            ("", None),
            (None, None),
            ("_1700000000000", None),
        ],
    )
    def test_username_from_token(self, token, expected):
        assert username_from_token(token) == expected


class TestTracing:
    def test_disabled_tracing_installs_nothing(self):
        assert init_tracing(Settings(OTEL_ENABLED=False)) is False

    def test_shutdown_without_provider_is_noop(self):
        shutdown_tracing()
