"""Pooled outbound HTTP for the template host and Pinata.

One ``httpx.AsyncClient`` per process. Each outbound call kind carries its
own timeout (``timeout_for``): template downloads and file uploads move
megabytes, signed URL requests are tiny JSON round trips.
"""

from __future__ import annotations

from enum import Enum

import httpx

from core.config import Settings, get_settings

# Connection setup is bounded separately so a dead host fails fast
CONNECT_TIMEOUT_SECONDS = 5.0

_http_client: httpx.AsyncClient | None = None


class OutboundCall(str, Enum):
    TEMPLATE_FETCH = "template_fetch"
    UPLOAD = "upload"
    SIGNED_URL = "signed_url"


def timeout_for(call: OutboundCall, settings: Settings | None = None) -> httpx.Timeout:
    settings = settings or get_settings()
    total = {
        OutboundCall.TEMPLATE_FETCH: settings.template_timeout,
        OutboundCall.UPLOAD: settings.upload_timeout,
        OutboundCall.SIGNED_URL: settings.http_timeout,
    }[call]
    return httpx.Timeout(total, connect=min(CONNECT_TIMEOUT_SECONDS, total))


async def get_http_client() -> httpx.AsyncClient:
    """Shared client; ``http_timeout`` is only the default for untagged calls."""
    global _http_client
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(
            timeout=get_settings().http_timeout,
            follow_redirects=True,
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        )
    return _http_client


async def close_http_client() -> None:
    global _http_client
    client, _http_client = _http_client, None
    if client is not None and not client.is_closed:
        await client.aclose()
