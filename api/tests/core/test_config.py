"""Unit tests for core.config module.

Tests cover:
- Settings model_validator production checks
- Signed URL expiry and minimum font bounds
- gateway_base_url property
- get_settings / clear_settings_cache lru_cache behavior
"""

import pytest
from pydantic import ValidationError

from core.config import (
    MAX_SIGNED_URL_EXPIRY_SECONDS,
    Settings,
    clear_settings_cache,
    get_settings,
)


@pytest.fixture(autouse=True)
def _clear_settings():
    """Clear lru_cache between tests."""
    clear_settings_cache()
    yield
    clear_settings_cache()


# ---------------------------------------------------------------------------
# Settings validation
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestSettingsValidation:
    def test_debug_mode_allows_missing_credentials(self):
        settings = Settings(debug=True, pinata_jwt="", pinata_gateway="")

        assert settings.debug is True

    def test_production_requires_jwt(self):
        with pytest.raises(ValidationError, match="PINATA_JWT"):
            Settings(debug=False, pinata_jwt="", pinata_gateway="gw.test")

    def test_production_requires_gateway(self):
        with pytest.raises(ValidationError, match="PINATA_GATEWAY"):
            Settings(debug=False, pinata_jwt="jwt", pinata_gateway="")

    def test_production_with_credentials(self):
        settings = Settings(debug=False, pinata_jwt="jwt", pinata_gateway="gw.test")

        assert settings.pinata_jwt == "jwt"

    @pytest.mark.parametrize("expiry", [0, -1, MAX_SIGNED_URL_EXPIRY_SECONDS + 1])
    def test_signed_url_expiry_bounds(self, expiry):
        with pytest.raises(ValidationError, match="SIGNED_URL_EXPIRY_SECONDS"):
            Settings(debug=True, signed_url_expiry_seconds=expiry)

    def test_signed_url_expiry_at_maximum(self):
        settings = Settings(
            debug=True, signed_url_expiry_seconds=MAX_SIGNED_URL_EXPIRY_SECONDS
        )

        assert settings.signed_url_expiry_seconds == 30 * 24 * 60 * 60

    def test_min_name_font_size_must_be_positive(self):
        with pytest.raises(ValidationError, match="MIN_NAME_FONT_SIZE"):
            Settings(debug=True, min_name_font_size=0)

    def test_defaults(self):
        settings = Settings(debug=True)

        assert settings.signed_url_expiry_seconds == 3600
        assert settings.min_name_font_size == 96
        assert settings.qr_base_url == "https://verify.eduverse.com/certificate"
        assert settings.pinata_api_url == "https://api.pinata.cloud/v3"
        assert settings.pinata_uploads_url == "https://uploads.pinata.cloud/v3"

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("MIN_NAME_FONT_SIZE", "120")
        monkeypatch.setenv("HTTP_TIMEOUT", "5.5")

        settings = Settings(debug=True)

        assert settings.min_name_font_size == 120
        assert settings.http_timeout == 5.5

    def test_timeouts_must_be_positive(self):
        with pytest.raises(ValidationError, match="timeouts"):
            Settings(debug=True, upload_timeout=0)

    def test_settings_are_frozen(self):
        settings = Settings(debug=True)

        with pytest.raises(ValidationError):
            settings.debug = False


@pytest.mark.unit
class TestGatewayBaseUrl:
    def test_bare_domain(self):
        settings = Settings(debug=True, pinata_gateway="copper-far.mypinata.cloud")

        assert settings.gateway_base_url == "https://copper-far.mypinata.cloud"

    def test_protocol_and_trailing_slash(self):
        settings = Settings(debug=True, pinata_gateway="http://localhost:8080/")

        assert settings.gateway_base_url == "http://localhost:8080"


@pytest.mark.unit
class TestSettingsCache:
    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()

    def test_clear_settings_cache_creates_new_instance(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("MIN_NAME_FONT_SIZE", "150")
        clear_settings_cache()

        second = get_settings()

        assert second is not first
        assert second.min_name_font_size == 150
