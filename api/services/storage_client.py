"""Pinata private IPFS storage client.

Wraps the three storage calls the certificate pipeline needs:
- upload_binary: store raw bytes (the certificate PNG)
- upload_json: store a JSON document (the certificate metadata)
- create_signed_url: time-limited access link for a private CID

Content addressing means identical bytes always come back with the same CID,
so re-running an upload is harmless.

SCALABILITY:
- Circuit breaker fails fast when Pinata is unavailable (5 failures -> 60s recovery)
- Connection pooling via the shared httpx.AsyncClient
- No retries here: the caller decides whether to re-run the whole pipeline
"""

import json
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from circuitbreaker import circuit

from core.config import Settings, get_settings
from core.http_client import OutboundCall, get_http_client, timeout_for
from core.logger import get_logger
from core.telemetry import track_dependency

logger = get_logger(__name__)

JSON_MIME_TYPE = "application/json"

# Pinata rejects uploads carrying more than this many keyvalues
MAX_KEYVALUES = 9


class StorageError(Exception):
    """Base class for storage failures.

    ``code`` is a stable machine-readable cause, ``retryable`` tells the caller
    whether running the same request again could succeed.
    """

    code = "UPLOAD_FAILED"
    retryable = False

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class StorageAuthError(StorageError):
    """Raised on 401/403: the JWT is missing, invalid or lacks scope."""

    code = "AUTHENTICATION_ERROR"


class StorageRejectedError(StorageError):
    """Raised on other 4xx responses; the request itself is wrong."""

    code = "UPLOAD_FAILED"


class StorageServerError(StorageError):
    """Raised on 5xx and 429 responses (retriable)."""

    code = "SERVER_ERROR"
    retryable = True


class StorageNetworkError(StorageError):
    """Raised when the request never got a response."""

    code = "NETWORK_ERROR"
    retryable = True


class StorageTimeoutError(StorageNetworkError):
    code = "TIMEOUT"


# Exceptions that count towards opening the circuit
CIRCUIT_EXCEPTIONS: tuple[type[Exception], ...] = (
    StorageNetworkError,
    StorageServerError,
)


@dataclass(frozen=True)
class UploadedFile:
    cid: str
    pinata_id: str
    name: str
    size: int
    mime_type: str


@dataclass(frozen=True)
class SignedUrl:
    url: str
    expires_at: int  # Unix timestamp in milliseconds


class StorageClient(Protocol):
    """Private content-addressed storage used by the publisher."""

    async def upload_binary(
        self, data: bytes, name: str, keyvalues: Mapping[str, str], mime_type: str
    ) -> UploadedFile: ...

    async def upload_json(
        self, document: Mapping[str, Any], name: str, keyvalues: Mapping[str, str]
    ) -> UploadedFile: ...

    async def create_signed_url(self, cid: str, ttl_seconds: int) -> SignedUrl: ...


def serialize_json_document(document: Mapping[str, Any]) -> bytes:
    """Stable JSON bytes, so the same document always gets the same CID."""
    return json.dumps(document, ensure_ascii=False, separators=(",", ":")).encode(
        "utf-8"
    )


def _raise_for_status(response: httpx.Response, operation: str) -> None:
    if response.is_success:
        return

    status = response.status_code
    message = f"Pinata {operation} failed with HTTP {status}: {response.text[:200]}"
    if status in (401, 403):
        raise StorageAuthError(message, status_code=status)
    if status == 429 or status >= 500:
        raise StorageServerError(message, status_code=status)
    raise StorageRejectedError(message, status_code=status)


async def _send(
    operation: str, request: Callable[[], Awaitable[httpx.Response]]
) -> dict[str, Any]:
    try:
        response = await request()
    except httpx.TimeoutException as e:
        raise StorageTimeoutError(f"Pinata {operation} timed out: {e}") from e
    except httpx.RequestError as e:
        raise StorageNetworkError(f"Pinata {operation} network error: {e}") from e

    _raise_for_status(response, operation)
    try:
        payload = response.json()
    except ValueError as e:
        raise StorageRejectedError(
            f"Pinata {operation} returned invalid JSON", status_code=200
        ) from e
    if not isinstance(payload, dict) or "data" not in payload:
        raise StorageRejectedError(
            f"Pinata {operation} response has no data field", status_code=200
        )
    return payload


@track_dependency("pinata_upload", "HTTP")
@circuit(
    failure_threshold=5,
    recovery_timeout=60,
    expected_exception=CIRCUIT_EXCEPTIONS,
    name="pinata_upload_circuit",
)
async def _post_file(
    client: httpx.AsyncClient,
    url: str,
    headers: dict[str, str],
    data: bytes,
    name: str,
    mime_type: str,
    keyvalues: Mapping[str, str],
    timeout: httpx.Timeout,
) -> dict[str, Any]:
    return await _send(
        "upload",
        lambda: client.post(
            url,
            headers=headers,
            timeout=timeout,
            files={"file": (name, data, mime_type)},
            data={
                "network": "private",
                "name": name,
                "keyvalues": json.dumps(dict(keyvalues)),
            },
        ),
    )


@track_dependency("pinata_signed_url", "HTTP")
@circuit(
    failure_threshold=5,
    recovery_timeout=60,
    expected_exception=CIRCUIT_EXCEPTIONS,
    name="pinata_signed_url_circuit",
)
async def _post_download_link(
    client: httpx.AsyncClient,
    url: str,
    headers: dict[str, str],
    body: dict[str, Any],
    timeout: httpx.Timeout,
) -> dict[str, Any]:
    return await _send(
        "signed URL",
        lambda: client.post(url, headers=headers, json=body, timeout=timeout),
    )


class PinataStorageClient:
    """StorageClient backed by the Pinata v3 API."""

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._settings = settings or get_settings()
        self._http_client = http_client
        self._clock = clock

    async def _client(self) -> httpx.AsyncClient:
        if self._http_client is not None:
            return self._http_client
        return await get_http_client()

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._settings.pinata_jwt}"}

    async def upload_binary(
        self,
        data: bytes,
        name: str,
        keyvalues: Mapping[str, str],
        mime_type: str = "application/octet-stream",
    ) -> UploadedFile:
        payload = await _post_file(
            await self._client(),
            f"{self._settings.pinata_uploads_url}/files",
            self._headers,
            data,
            name,
            mime_type,
            keyvalues,
            timeout_for(OutboundCall.UPLOAD, self._settings),
        )
        uploaded = payload["data"]
        logger.info(
            "pinata.upload.complete",
            cid=uploaded.get("cid"),
            name=name,
            size=uploaded.get("size", len(data)),
            keyvalue_count=len(keyvalues),
        )
        return UploadedFile(
            cid=uploaded["cid"],
            pinata_id=str(uploaded.get("id", "")),
            name=uploaded.get("name", name),
            size=int(uploaded.get("size", len(data))),
            mime_type=uploaded.get("mime_type") or mime_type,
        )

    async def upload_json(
        self, document: Mapping[str, Any], name: str, keyvalues: Mapping[str, str]
    ) -> UploadedFile:
        uploaded = await self.upload_binary(
            serialize_json_document(document), name, keyvalues, JSON_MIME_TYPE
        )
        # Pinata may report text/plain for JSON bodies
        return UploadedFile(
            cid=uploaded.cid,
            pinata_id=uploaded.pinata_id,
            name=uploaded.name,
            size=uploaded.size,
            mime_type=JSON_MIME_TYPE,
        )

    async def create_signed_url(self, cid: str, ttl_seconds: int) -> SignedUrl:
        now = self._clock()
        payload = await _post_download_link(
            await self._client(),
            f"{self._settings.pinata_api_url}/files/private/download_link",
            self._headers,
            {
                "url": f"{self._settings.gateway_base_url}/files/{cid}",
                "expires": ttl_seconds,
                "date": int(now),
                "method": "GET",
            },
            timeout_for(OutboundCall.SIGNED_URL, self._settings),
        )
        return SignedUrl(
            url=str(payload["data"]),
            expires_at=int((now + ttl_seconds) * 1000),
        )


def get_storage_client() -> StorageClient:
    return PinataStorageClient()
