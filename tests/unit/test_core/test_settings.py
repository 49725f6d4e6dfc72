"""Unit tests for the settings classes and their environment handling."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from notify_service.core.settings import (
    AppSettings,
    DatabaseSettings,
    DispatchSettings,
    RateLimitSettings,
    WebhookSettings,
    get_dispatch_settings,
)


@pytest.mark.unit
class TestAppSettings:
    """Test suite for AppSettings."""

    def test_defaults(self):
        settings = AppSettings()
        assert settings.service_name == "notify-service"
        assert settings.api_prefix == "/api/v1"
        assert settings.tenant_header == "X-Tenant-ID"
        assert settings.run_workers is False

    def test_env_prefix(self, monkeypatch):
        """APP_ variables override defaults."""
        monkeypatch.setenv("APP_TENANT_HEADER", "X-Org")
        monkeypatch.setenv("APP_RUN_WORKERS", "true")
        settings = AppSettings()
        assert settings.tenant_header == "X-Org"
        assert settings.run_workers is True

    def test_rejects_bad_service_name(self):
        with pytest.raises(ValidationError):
            AppSettings(service_name="Not Valid")

    def test_frozen(self):
        settings = AppSettings()
        with pytest.raises(ValidationError):
            settings.port = 9000


@pytest.mark.unit
class TestDatabaseSettings:
    """Test suite for DatabaseSettings."""

    def test_disabled_uses_sqlite_fallback(self):
        settings = DatabaseSettings(enabled=False)
        assert settings.get_sqlalchemy_url() == settings.sqlite_fallback_url
        assert settings.is_sqlite


@pytest.mark.unit
class TestDispatchSettings:
    """Test suite for DispatchSettings."""

    def test_attempts_per_channel(self):
        settings = DispatchSettings()
        assert settings.attempts_for("email") == 5
        assert settings.attempts_for("sms") == 3
        assert settings.attempts_for("unknown") == settings.default_max_attempts

    def test_max_delay_must_cover_base_delay(self):
        with pytest.raises(ValidationError):
            DispatchSettings(retry_base_delay_seconds=600, retry_max_delay_seconds=60)

    def test_claim_must_outlive_a_send(self):
        with pytest.raises(ValidationError, match="visibility_timeout_seconds"):
            DispatchSettings(visibility_timeout_seconds=20, send_timeout_seconds=15)
        settings = DispatchSettings(visibility_timeout_seconds=30, send_timeout_seconds=15)
        assert settings.visibility_timeout_seconds == 30

    def test_mandatory_defaults(self):
        settings = DispatchSettings()
        assert "payment_failed" in settings.mandatory_type_codes
        assert "security" in settings.mandatory_categories
        assert "in_app" not in settings.quiet_hours_channels

    def test_loader_is_cached(self):
        assert get_dispatch_settings() is get_dispatch_settings()


@pytest.mark.unit
class TestRateLimitSettings:
    """Test suite for RateLimitSettings."""

    def test_default_quotas(self):
        settings = RateLimitSettings()
        assert settings.backend == "database"
        assert settings.default_quotas["sms"] == {"day": 500}

    def test_quotas_from_env_json(self, monkeypatch):
        monkeypatch.setenv("RATELIMIT_DEFAULT_QUOTAS", '{"sms": {"hour": 2}}')
        settings = RateLimitSettings()
        assert settings.default_quotas == {"sms": {"hour": 2}}


@pytest.mark.unit
class TestWebhookSettings:
    """Test suite for WebhookSettings."""

    def test_defaults(self):
        settings = WebhookSettings()
        assert settings.signature_header == "X-Webhook-Signature"
        assert settings.auto_disable_after == 5
        assert settings.retry_attempts == 3

    def test_bounds(self):
        with pytest.raises(ValidationError):
            WebhookSettings(per_tenant_concurrency=0)

    def test_claim_must_outlive_a_request(self):
        with pytest.raises(ValidationError, match="visibility_timeout_seconds"):
            WebhookSettings(timeout_seconds=60, visibility_timeout_seconds=90)
        assert WebhookSettings(timeout_seconds=60, visibility_timeout_seconds=120).timeout_seconds == 60
