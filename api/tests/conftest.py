"""Pytest configuration and shared fixtures.

This module provides:
- Environment defaults so Settings validates without real credentials
- A plain template raster and a template source that serves it
- An in-memory content-addressed storage fake
- A pipeline wired with both

Architecture follows:
- https://pythonspeed.com/articles/verified-fakes/
"""

# Set environment variables BEFORE any imports that trigger Settings validation
import os

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("PINATA_JWT", "test_pinata_jwt")
os.environ.setdefault("PINATA_GATEWAY", "test-gateway.mypinata.cloud")

from io import BytesIO

import pytest
from PIL import Image

from core.config import Settings, clear_settings_cache
from core.wide_event import init_wide_event
from services.certificate_pipeline import CertificatePipeline
from services.template_service import TemplateSource
from tests.fakes import FakeStorage

TEST_TEMPLATE_URL = "https://templates.test/certificate-template.png"


@pytest.fixture(autouse=True)
def setup_wide_event():
    """Start every test with an empty, closed wide event."""
    init_wide_event()
    yield


@pytest.fixture(autouse=True)
def _clear_settings():
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        debug=True,
        pinata_jwt="test_pinata_jwt",
        pinata_gateway="test-gateway.mypinata.cloud",
        template_url=TEST_TEMPLATE_URL,
        signed_url_expiry_seconds=3600,
    )


@pytest.fixture(scope="session")
def template_png() -> bytes:
    """A small cream-colored template; the compositor stretches it to size."""
    buffer = BytesIO()
    Image.new("RGB", (625, 442), "#FBF7EE").save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def template_source(template_png: bytes) -> TemplateSource:
    async def fetch(url: str) -> bytes:
        return template_png

    return TemplateSource(fetcher=fetch)


@pytest.fixture
def fake_storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def pipeline(
    template_source: TemplateSource,
    fake_storage: FakeStorage,
    test_settings: Settings,
) -> CertificatePipeline:
    return CertificatePipeline(template_source, fake_storage, settings=test_settings)
