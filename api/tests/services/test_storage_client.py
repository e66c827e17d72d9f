"""Tests for services.storage_client.

HTTP calls are mocked with respx. The circuit breakers are module-level, so
each circuit sees fewer network-class failures here than its threshold.
"""

import json

import httpx
import pytest

from services.storage_client import (
    JSON_MIME_TYPE,
    PinataStorageClient,
    StorageAuthError,
    StorageNetworkError,
    StorageRejectedError,
    StorageServerError,
    StorageTimeoutError,
    serialize_json_document,
)

pytestmark = pytest.mark.unit

UPLOAD_URL = "https://uploads.pinata.cloud/v3/files"
DOWNLOAD_LINK_URL = "https://api.pinata.cloud/v3/files/private/download_link"
FIXED_CLOCK = 1_700_000_000.0


def pinata_file(cid: str = "bafyimage", **overrides) -> dict:
    data = {
        "id": "0195f8a3-file-id",
        "name": "certificate-cert-1.png",
        "cid": cid,
        "size": 1234,
        "mime_type": "image/png",
        "network": "private",
    }
    data.update(overrides)
    return {"data": data}


@pytest.fixture
async def http_client():
    async with httpx.AsyncClient() as client:
        yield client


@pytest.fixture
def storage(test_settings, http_client) -> PinataStorageClient:
    return PinataStorageClient(
        settings=test_settings, http_client=http_client, clock=lambda: FIXED_CLOCK
    )


class TestUploadBinary:
    async def test_uploads_private_file(self, storage, respx_mock, test_settings):
        route = respx_mock.post(UPLOAD_URL).mock(
            return_value=httpx.Response(200, json=pinata_file())
        )

        uploaded = await storage.upload_binary(
            b"png-bytes",
            "certificate-cert-1.png",
            {"courseId": "7", "fileType": "certificate"},
            "image/png",
        )

        assert uploaded.cid == "bafyimage"
        assert uploaded.pinata_id == "0195f8a3-file-id"
        assert uploaded.size == 1234
        assert uploaded.mime_type == "image/png"

        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer test_pinata_jwt"
        body = request.content
        assert b'name="network"' in body
        assert b"private" in body
        assert b"png-bytes" in body
        assert b'{"courseId": "7", "fileType": "certificate"}' in body
        assert request.extensions["timeout"]["read"] == test_settings.upload_timeout
        assert request.extensions["timeout"]["connect"] == 5.0

    async def test_missing_optional_fields_fall_back(self, storage, respx_mock):
        respx_mock.post(UPLOAD_URL).mock(
            return_value=httpx.Response(200, json={"data": {"cid": "bafyonly"}})
        )

        uploaded = await storage.upload_binary(b"12345", "x.png", {}, "image/png")

        assert uploaded.cid == "bafyonly"
        assert uploaded.name == "x.png"
        assert uploaded.size == 5
        assert uploaded.mime_type == "image/png"

    async def test_unauthorized(self, storage, respx_mock):
        respx_mock.post(UPLOAD_URL).mock(
            return_value=httpx.Response(401, json={"error": "invalid token"})
        )

        with pytest.raises(StorageAuthError) as exc_info:
            await storage.upload_binary(b"x", "x.png", {}, "image/png")

        assert exc_info.value.status_code == 401
        assert exc_info.value.retryable is False

    async def test_bad_request(self, storage, respx_mock):
        respx_mock.post(UPLOAD_URL).mock(return_value=httpx.Response(400))

        with pytest.raises(StorageRejectedError) as exc_info:
            await storage.upload_binary(b"x", "x.png", {}, "image/png")

        assert exc_info.value.code == "UPLOAD_FAILED"

    async def test_server_error_is_retryable(self, storage, respx_mock):
        respx_mock.post(UPLOAD_URL).mock(return_value=httpx.Response(502))

        with pytest.raises(StorageServerError) as exc_info:
            await storage.upload_binary(b"x", "x.png", {}, "image/png")

        assert exc_info.value.retryable is True
        assert exc_info.value.status_code == 502

    async def test_connection_error(self, storage, respx_mock):
        respx_mock.post(UPLOAD_URL).mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(StorageNetworkError) as exc_info:
            await storage.upload_binary(b"x", "x.png", {}, "image/png")

        assert exc_info.value.code == "NETWORK_ERROR"
        assert exc_info.value.retryable is True

    async def test_timeout(self, storage, respx_mock):
        respx_mock.post(UPLOAD_URL).mock(side_effect=httpx.ReadTimeout("slow"))

        with pytest.raises(StorageTimeoutError) as exc_info:
            await storage.upload_binary(b"x", "x.png", {}, "image/png")

        assert exc_info.value.code == "TIMEOUT"
        assert exc_info.value.retryable is True

    async def test_response_without_data(self, storage, respx_mock):
        respx_mock.post(UPLOAD_URL).mock(
            return_value=httpx.Response(200, json={"ok": True})
        )

        with pytest.raises(StorageRejectedError, match="no data"):
            await storage.upload_binary(b"x", "x.png", {}, "image/png")


class TestUploadJson:
    async def test_uploads_compact_json(self, storage, respx_mock):
        route = respx_mock.post(UPLOAD_URL).mock(
            return_value=httpx.Response(
                200, json=pinata_file("bafymeta", mime_type="text/plain")
            )
        )
        document = {"name": "Rust - Certificate", "attributes": [{"value": "Zoë"}]}

        uploaded = await storage.upload_json(
            document, "meta.json", {"dataType": "json"}
        )

        assert uploaded.cid == "bafymeta"
        assert uploaded.mime_type == JSON_MIME_TYPE
        assert serialize_json_document(document) in route.calls.last.request.content

    def test_serialization_is_stable(self):
        document = {"b": 1, "a": "Zoë"}

        data = serialize_json_document(document)

        assert data == '{"b":1,"a":"Zoë"}'.encode()
        assert json.loads(data) == document


class TestCreateSignedUrl:
    async def test_requests_download_link(self, storage, respx_mock, test_settings):
        route = respx_mock.post(DOWNLOAD_LINK_URL).mock(
            return_value=httpx.Response(
                200, json={"data": "https://gw.test/files/bafy?X-Signature=abc"}
            )
        )

        signed = await storage.create_signed_url("bafyimage", 3600)

        assert signed.url == "https://gw.test/files/bafy?X-Signature=abc"
        assert signed.expires_at == int((FIXED_CLOCK + 3600) * 1000)
        assert json.loads(route.calls.last.request.content) == {
            "url": "https://test-gateway.mypinata.cloud/files/bafyimage",
            "expires": 3600,
            "date": int(FIXED_CLOCK),
            "method": "GET",
        }
        timeout = route.calls.last.request.extensions["timeout"]
        assert timeout["read"] == test_settings.http_timeout

    async def test_server_error(self, storage, respx_mock):
        respx_mock.post(DOWNLOAD_LINK_URL).mock(return_value=httpx.Response(503))

        with pytest.raises(StorageServerError):
            await storage.create_signed_url("bafyimage", 3600)

    async def test_forbidden(self, storage, respx_mock):
        respx_mock.post(DOWNLOAD_LINK_URL).mock(return_value=httpx.Response(403))

        with pytest.raises(StorageAuthError):
            await storage.create_signed_url("bafyimage", 3600)


class TestGatewayUrl:
    def test_gateway_with_protocol_is_kept(self, test_settings):
        settings = test_settings.model_copy(
            update={"pinata_gateway": "https://gw.example.com/"}
        )

        assert settings.gateway_base_url == "https://gw.example.com"

    def test_bare_domain_gets_https(self, test_settings):
        assert test_settings.gateway_base_url == "https://test-gateway.mypinata.cloud"
