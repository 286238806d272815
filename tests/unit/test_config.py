"""Unit tests for configuration and settings."""
import pytest
from pydantic import ValidationError

from common.config import Settings, get_settings, reset_settings_cache


@pytest.fixture()
def fresh_settings(monkeypatch):
    """Build settings from a patched environment, restoring the cache afterwards."""

    def build(**env):
        for key, value in env.items():
            monkeypatch.setenv(key, value)
        reset_settings_cache()
        return get_settings()

    yield build
    monkeypatch.undo()
    reset_settings_cache()


class TestSettings:
    """Environment-driven configuration."""

    def test_settings_are_cached_until_reset(self):
        first = get_settings()

        assert get_settings() is first
        reset_settings_cache()
        assert get_settings() is not first

    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.jwt_algorithm == "HS256"
        assert settings.access_token_expire_minutes > 0
        assert settings.booking_refresh_on_read is True
        assert settings.booking_status_interval_seconds == 60
        assert settings.cors_origins == ["*"]

    def test_service_ports(self):
        settings = Settings(_env_file=None)

        assert (
            settings.users_service_port,
            settings.rooms_service_port,
            settings.bookings_service_port,
            settings.organizations_service_port,
        ) == (8001, 8002, 8003, 8004)

    def test_test_environment_is_applied(self):
        settings = get_settings()

        assert settings.database_url.startswith("sqlite")
        assert settings.rate_limiting_enabled is False

    def test_booking_triggers_from_environment(self, fresh_settings):
        settings = fresh_settings(BOOKING_STATUS_INTERVAL_SECONDS="300", BOOKING_REFRESH_ON_READ="false")

        assert settings.booking_status_interval_seconds == 300
        assert settings.booking_refresh_on_read is False

    def test_interval_must_be_positive(self, monkeypatch):
        monkeypatch.setenv("BOOKING_STATUS_INTERVAL_SECONDS", "0")

        with pytest.raises(ValidationError):
            Settings(_env_file=None)
