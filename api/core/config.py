"""Service settings, read from the environment (and .env) by pydantic-settings."""

from functools import lru_cache
from typing import Self

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Pinata caps signed URL lifetime at 30 days
MAX_SIGNED_URL_EXPIRY_SECONDS = 30 * 24 * 60 * 60


class Settings(BaseSettings):
    """Pinata credentials, template source and rendering knobs."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Pinata private IPFS credentials
    # PINATA_GATEWAY is the dedicated gateway domain without protocol,
    # e.g. "copper-far-firefly-220.mypinata.cloud"
    pinata_jwt: str = ""
    pinata_gateway: str = ""
    pinata_api_url: str = "https://api.pinata.cloud/v3"
    pinata_uploads_url: str = "https://uploads.pinata.cloud/v3"

    signed_url_expiry_seconds: int = 3600

    # Background raster used for every certificate. Versioned by URL, so the
    # in-process template cache never needs invalidation.
    template_url: str = (
        "https://copper-far-firefly-220.mypinata.cloud/ipfs/"
        "bafybeiaibxpgjjcjr3dgfyhhg365rt47xl2nwwrnesr6zshpompucxgn3q"
    )
    qr_base_url: str = "https://verify.eduverse.com/certificate"

    # Seconds; signed URL requests use http_timeout, the large transfers
    # get their own budget
    http_timeout: float = 30.0
    template_timeout: float = 30.0
    upload_timeout: float = 120.0

    # Names that would need a smaller font than this are rejected
    min_name_font_size: int = 96

    # Optional TrueType fonts; Pillow's bundled font is used when unset
    serif_bold_font_path: str = ""
    sans_font_path: str = ""
    sans_bold_font_path: str = ""

    # Use "redis://host:port" in production for distributed rate limiting
    ratelimit_storage_uri: str = "memory://"

    # Feature flags, production defaults
    debug: bool = False  # Relaxes credential validation
    enable_docs: bool = False  # Swagger UI at /docs

    @model_validator(mode="after")
    def validate_config(self) -> Self:
        if not 0 < self.signed_url_expiry_seconds <= MAX_SIGNED_URL_EXPIRY_SECONDS:
            raise ValueError(
                "SIGNED_URL_EXPIRY_SECONDS must be between 1 and "
                f"{MAX_SIGNED_URL_EXPIRY_SECONDS} (30 days)."
            )
        if self.min_name_font_size <= 0:
            raise ValueError("MIN_NAME_FONT_SIZE must be positive.")
        if min(self.http_timeout, self.template_timeout, self.upload_timeout) <= 0:
            raise ValueError("HTTP timeouts must be positive.")

        # In production (debug=False), require storage credentials
        if not self.debug:
            if not self.pinata_jwt:
                raise ValueError(
                    "PINATA_JWT must be set. "
                    "Set DEBUG=true to skip this check in development."
                )
            if not self.pinata_gateway:
                raise ValueError(
                    "PINATA_GATEWAY must be set. "
                    "Set DEBUG=true to skip this check in development."
                )
        return self

    @property
    def gateway_base_url(self) -> str:
        """Gateway URL with protocol, tolerating values that already have one."""
        gateway = self.pinata_gateway.rstrip("/")
        if gateway.startswith(("http://", "https://")):
            return gateway
        return f"https://{gateway}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def clear_settings_cache() -> None:
    """Drop the cached Settings; the next get_settings() re-reads the env."""
    get_settings.cache_clear()
