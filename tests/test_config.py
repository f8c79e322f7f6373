"""
Tests for settings and CORS configuration.
"""
import pytest

from legalnexus.config import (
    DEV_CORS_ORIGINS,
    ConfigurationError,
    Settings,
    get_cors_origins,
    is_allowed_origin,
    is_public_path,
)


class TestSettings:

    def test_require_returns_value(self, settings):
        assert settings.require("webhook_secret") == "hook-secret"

    def test_require_names_env_variable(self):
        settings = Settings(GREEN_API_TOKEN="  ", ENVIRONMENT="test")

        with pytest.raises(ConfigurationError, match="GREEN_API_TOKEN"):
            settings.require("green_api_token")

    def test_app_url_without_trailing_slash(self, settings):
        assert settings.get_app_url() == "https://app.legalnexus.test"

    @pytest.mark.parametrize("raw,expected", [
        ('["https://a.example", "https://b.example"]', ["https://a.example", "https://b.example"]),
        ("https://a.example, https://b.example", ["https://a.example", "https://b.example"]),
        ("https://a.example;https://b.example;", ["https://a.example", "https://b.example"]),
        ("", []),
    ])
    def test_allowed_origins_parsing(self, raw, expected):
        assert Settings(ALLOWED_ORIGINS=raw).allowed_origins == expected

    def test_defaults(self):
        settings = Settings(ENVIRONMENT="test")
        assert settings.default_country_code == "972"
        assert settings.pending_selection_ttl_minutes == 30
        assert settings.signing_default_expiry_days == 30


class TestCorsOrigins:

    def test_production_excludes_dev_origins(self):
        settings = Settings(
            APP_URL="https://app.legalnexus.co.il/",
            ALLOWED_ORIGINS="https://admin.legalnexus.co.il/",
            ENVIRONMENT="production",
        )

        assert get_cors_origins(settings) == ["https://admin.legalnexus.co.il", "https://app.legalnexus.co.il"]

    def test_development_includes_dev_origins(self, settings):
        origins = get_cors_origins(settings)

        assert "https://app.legalnexus.test" in origins
        assert set(DEV_CORS_ORIGINS) <= set(origins)

    def test_is_allowed_origin(self, settings):
        assert is_allowed_origin("https://app.legalnexus.test/", settings) is True
        assert is_allowed_origin("https://evil.example", settings) is False
        assert is_allowed_origin("", settings) is False

    @pytest.mark.parametrize("path,expected", [
        ("/v1/public/signing/resolve", True),
        ("/v1/public/signing/complete", True),
        ("/v1/signing-requests", False),
        ("/v1/publicity", False),
        ("/health", False),
    ])
    def test_is_public_path(self, path, expected):
        assert is_public_path(path) is expected
