"""Certificate template fetching.

The background raster is immutable per URL (new templates get new CIDs), so a
process-wide memo cache is safe to share across concurrent generations and
never needs invalidation.
"""

import asyncio
from collections.abc import Awaitable, Callable

import httpx

from core.http_client import OutboundCall, get_http_client, timeout_for
from core.logger import get_logger
from core.telemetry import track_dependency

logger = get_logger(__name__)

TemplateFetcher = Callable[[str], Awaitable[bytes]]


class TemplateFetchError(Exception):
    """Raised when the template cannot be downloaded."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


@track_dependency("template_fetch", "HTTP")
async def fetch_template(url: str) -> bytes:
    """Plain HTTP GET of the template raster."""
    client = await get_http_client()
    try:
        response = await client.get(
            url, timeout=timeout_for(OutboundCall.TEMPLATE_FETCH)
        )
    except httpx.RequestError as e:
        raise TemplateFetchError(f"Template download failed: {e}") from e

    if response.status_code >= 400:
        # 4xx means the URL is wrong; retrying will not help
        raise TemplateFetchError(
            f"Template download returned HTTP {response.status_code}",
            retryable=response.status_code >= 500 or response.status_code == 429,
        )
    if not response.content:
        raise TemplateFetchError("Template download returned an empty body")
    return response.content


class TemplateSource:
    """Fetches templates by URL and memoizes the bytes.

    Concurrent callers asking for the same URL share one in-flight download,
    failure included. Different URLs download independently.
    """

    def __init__(self, fetcher: TemplateFetcher = fetch_template, cache: bool = True):
        self._fetcher = fetcher
        self._cache_enabled = cache
        self._cache: dict[str, bytes] = {}
        self._inflight: dict[str, asyncio.Task[bytes]] = {}

    async def _load(self, url: str) -> bytes:
        data = await self._fetcher(url)
        logger.info("certificate.template.loaded", url=url, size_bytes=len(data))
        if self._cache_enabled:
            self._cache[url] = data
        return data

    def _forget(self, url: str, task: asyncio.Task[bytes]) -> None:
        if self._inflight.get(url) is task:
            del self._inflight[url]
        if not task.cancelled():
            # Marks a failure as retrieved even if every waiter went away
            task.exception()

    async def get(self, url: str) -> bytes:
        cached = self._cache.get(url)
        if cached is not None:
            return cached

        task = self._inflight.get(url)
        if task is None:
            task = asyncio.create_task(self._load(url))
            self._inflight[url] = task
            task.add_done_callback(lambda done: self._forget(url, done))
        # A cancelled caller must not cancel the download other callers share
        return await asyncio.shield(task)

    def clear(self) -> None:
        self._cache.clear()


_template_source: TemplateSource | None = None


def get_template_source() -> TemplateSource:
    """Process-wide template source shared by all pipeline runs."""
    global _template_source
    if _template_source is None:
        _template_source = TemplateSource()
    return _template_source
