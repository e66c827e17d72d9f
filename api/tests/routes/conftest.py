"""Route test configuration.

- Disables the rate limiter so handlers can be called repeatedly
- Serves the real app with the pipeline and storage dependencies overridden
"""

from collections.abc import AsyncGenerator
from unittest.mock import patch

import pytest
from httpx import ASGITransport, AsyncClient

from main import app
from services.certificate_pipeline import get_certificate_pipeline
from services.storage_client import get_storage_client


@pytest.fixture(autouse=True)
def _disable_rate_limiter():
    """Disable slowapi rate limiting so route handlers can be called directly."""
    with patch("core.ratelimit.limiter.enabled", False):
        yield


@pytest.fixture
async def client(pipeline, fake_storage) -> AsyncGenerator[AsyncClient]:
    app.dependency_overrides[get_certificate_pipeline] = lambda: pipeline
    app.dependency_overrides[get_storage_client] = lambda: fake_storage
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
