"""Verified fake for the StorageClient protocol.

Content-addressed like the real store: the CID is a hash of the bytes, so
uploading the same bytes twice returns the same CID.
"""

import hashlib
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from services.storage_client import (
    JSON_MIME_TYPE,
    SignedUrl,
    UploadedFile,
    serialize_json_document,
)

FAKE_NOW_MS = 1_700_000_000_000


@dataclass
class UploadCall:
    name: str
    keyvalues: dict[str, str]
    mime_type: str
    data: bytes


@dataclass
class FakeStorage:
    """In-memory storage with failure injection.

    ``fail_binary``, ``fail_json`` and ``fail_sign`` are exceptions raised by
    the matching operation instead of succeeding.
    """

    fail_binary: Exception | None = None
    fail_json: Exception | None = None
    fail_sign: Exception | None = None
    blobs: dict[str, bytes] = field(default_factory=dict)
    binary_calls: list[UploadCall] = field(default_factory=list)
    json_calls: list[UploadCall] = field(default_factory=list)
    sign_calls: list[tuple[str, int]] = field(default_factory=list)

    @staticmethod
    def cid_for(data: bytes) -> str:
        return "bafk" + hashlib.sha256(data).hexdigest()[:52]

    def _store(self, data: bytes, name: str, mime_type: str) -> UploadedFile:
        cid = self.cid_for(data)
        self.blobs[cid] = data
        return UploadedFile(
            cid=cid,
            pinata_id=f"pin-{cid[-8:]}",
            name=name,
            size=len(data),
            mime_type=mime_type,
        )

    async def upload_binary(
        self,
        data: bytes,
        name: str,
        keyvalues: Mapping[str, str],
        mime_type: str = "application/octet-stream",
    ) -> UploadedFile:
        self.binary_calls.append(UploadCall(name, dict(keyvalues), mime_type, data))
        if self.fail_binary is not None:
            raise self.fail_binary
        return self._store(data, name, mime_type)

    async def upload_json(
        self, document: Mapping[str, Any], name: str, keyvalues: Mapping[str, str]
    ) -> UploadedFile:
        data = serialize_json_document(document)
        self.json_calls.append(UploadCall(name, dict(keyvalues), JSON_MIME_TYPE, data))
        if self.fail_json is not None:
            raise self.fail_json
        return self._store(data, name, JSON_MIME_TYPE)

    async def create_signed_url(self, cid: str, ttl_seconds: int) -> SignedUrl:
        self.sign_calls.append((cid, ttl_seconds))
        if self.fail_sign is not None:
            raise self.fail_sign
        return SignedUrl(
            url=(
                f"https://test-gateway.mypinata.cloud/files/{cid}"
                f"?X-Expires={ttl_seconds}"
            ),
            expires_at=FAKE_NOW_MS + ttl_seconds * 1000,
        )
