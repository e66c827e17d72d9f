"""Two-stage certificate publishing.

The image is published first; its CID is embedded in the metadata document,
which is published second. The stages run as an ordered list and the runner
stops at the first failure, so metadata is never published without an image.

Nothing is rolled back when the metadata stage fails: storage is append-only
and content-addressed, so the already-published image is reported back to the
caller instead.
"""

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from circuitbreaker import CircuitBreakerError

from core.logger import get_logger
from core.wide_event import timed_stage
from rendering.compositor import RasterArtifact
from schemas import (
    CertificateMetadata,
    CertificateRequest,
    ErrorCode,
    MetadataAttribute,
    PipelineFailure,
    PipelineResult,
    PipelineSuccess,
    PublishedAsset,
)
from services.storage_client import (
    MAX_KEYVALUES,
    StorageClient,
    StorageError,
    UploadedFile,
)

logger = get_logger(__name__)


def certificate_image_name(certificate_id: str) -> str:
    return f"certificate-{certificate_id}.png"


def certificate_metadata_name(certificate_id: str) -> str:
    return f"certificate-metadata-{certificate_id}.json"


def build_keyvalues(
    *,
    course_id: str,
    file_type: str,
    uploaded_at: str,
    extra: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Build searchable keyvalues capped at Pinata's limit.

    Priority: courseId, fileType, uploadedAt, then ``extra`` in insertion
    order until the cap is reached.
    """
    keyvalues = {
        "courseId": course_id,
        "fileType": file_type,
        "uploadedAt": uploaded_at,
    }
    for key, value in (extra or {}).items():
        if len(keyvalues) >= MAX_KEYVALUES:
            break
        keyvalues.setdefault(key, str(value))
    return keyvalues


def build_certificate_metadata(
    request: CertificateRequest, image_cid: str
) -> CertificateMetadata:
    return CertificateMetadata(
        name=f"{request.course_name} - Certificate",
        description=f"Certificate of completion for {request.student_name}",
        image=image_cid,
        attributes=(
            MetadataAttribute(trait_type="Student", value=request.student_name),
            MetadataAttribute(trait_type="Course", value=request.course_name),
            MetadataAttribute(trait_type="Course ID", value=request.course_id),
            MetadataAttribute(
                trait_type="Completion Date", value=request.completion_date
            ),
            MetadataAttribute(trait_type="Instructor", value=request.instructor_name),
            MetadataAttribute(
                trait_type="Certificate ID", value=request.certificate_id
            ),
            MetadataAttribute(
                trait_type="Wallet Address", value=request.wallet_address
            ),
        ),
    )


@dataclass(frozen=True)
class Ok:
    data: PublishedAsset


@dataclass(frozen=True)
class Err:
    code: str
    message: str
    retryable: bool
    details: dict[str, Any] | None = None


StageOutcome = Ok | Err


def _classify(exc: Exception) -> Err:
    if isinstance(exc, StorageError):
        details = {"status_code": exc.status_code} if exc.status_code else None
        return Err(exc.code, str(exc), exc.retryable, details)
    if isinstance(exc, CircuitBreakerError):
        return Err("CIRCUIT_OPEN", "Storage temporarily unavailable", True)
    return Err("UPLOAD_FAILED", str(exc) or type(exc).__name__, False)


class PublishStage(str, Enum):
    IMAGE = "image"
    METADATA = "metadata"

    @property
    def failure_code(self) -> ErrorCode:
        return _FAILURE_CODES[self]


_FAILURE_CODES = {
    PublishStage.IMAGE: ErrorCode.IMAGE_UPLOAD_FAILED,
    PublishStage.METADATA: ErrorCode.METADATA_UPLOAD_FAILED,
}


@dataclass
class _PublishContext:
    raster: RasterArtifact
    request: CertificateRequest
    uploaded_at: str
    assets: dict[PublishStage, PublishedAsset] = field(default_factory=dict)


Stage = tuple[PublishStage, Callable[[_PublishContext], Awaitable[PublishedAsset]]]


class Publisher:
    """Publishes a certificate image and its metadata document."""

    def __init__(
        self,
        storage: StorageClient,
        signed_url_ttl_seconds: int,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self._storage = storage
        self._ttl = signed_url_ttl_seconds
        self._clock = clock

    async def _sign(self, uploaded: UploadedFile, uploaded_at: str) -> PublishedAsset:
        signed = await self._storage.create_signed_url(uploaded.cid, self._ttl)
        return PublishedAsset(
            content_id=uploaded.cid,
            pinata_id=uploaded.pinata_id,
            name=uploaded.name,
            size_bytes=uploaded.size,
            mime_type=uploaded.mime_type,
            signed_url=signed.url,
            signed_url_expiry=signed.expires_at,
            uploaded_at=uploaded_at,
        )

    async def _publish_image(self, ctx: _PublishContext) -> PublishedAsset:
        request = ctx.request
        uploaded = await self._storage.upload_binary(
            ctx.raster.data,
            certificate_image_name(request.certificate_id),
            build_keyvalues(
                course_id=request.course_id,
                file_type="certificate",
                uploaded_at=ctx.uploaded_at,
                extra={
                    "certificateId": request.certificate_id,
                    "studentName": request.student_name,
                    "courseName": request.course_name,
                },
            ),
            ctx.raster.mime_type,
        )
        return await self._sign(uploaded, ctx.uploaded_at)

    async def _publish_metadata(self, ctx: _PublishContext) -> PublishedAsset:
        request = ctx.request
        image = ctx.assets[PublishStage.IMAGE]
        metadata = build_certificate_metadata(request, image.content_id)
        uploaded = await self._storage.upload_json(
            metadata.model_dump(mode="json"),
            certificate_metadata_name(request.certificate_id),
            build_keyvalues(
                course_id=request.course_id,
                file_type="certificate-metadata",
                uploaded_at=ctx.uploaded_at,
                extra={
                    "certificateId": request.certificate_id,
                    "dataType": "json",
                },
            ),
        )
        return await self._sign(uploaded, ctx.uploaded_at)

    @property
    def stages(self) -> list[Stage]:
        """Ordered stages; each one may read the assets of the stages before it."""
        return [
            (PublishStage.IMAGE, self._publish_image),
            (PublishStage.METADATA, self._publish_metadata),
        ]

    async def _run_stage(
        self,
        stage: PublishStage,
        step: Callable[[_PublishContext], Awaitable[PublishedAsset]],
        ctx: _PublishContext,
    ) -> StageOutcome:
        try:
            with timed_stage("publish", f"{stage.value}_upload"):
                asset = await step(ctx)
        except Exception as e:
            outcome = _classify(e)
            logger.warning(
                "certificate.publish.stage_failed",
                stage=stage.value,
                reason=outcome.code,
                retryable=outcome.retryable,
                error=outcome.message,
            )
            return outcome
        logger.info(
            "certificate.publish.stage_complete",
            stage=stage.value,
            cid=asset.content_id,
            size_bytes=asset.size_bytes,
        )
        return Ok(asset)

    async def publish(
        self, raster: RasterArtifact, request: CertificateRequest
    ) -> PipelineResult:
        ctx = _PublishContext(
            raster=raster,
            request=request,
            uploaded_at=self._clock().isoformat().replace("+00:00", "Z"),
        )

        for stage, step in self.stages:
            outcome = await self._run_stage(stage, step, ctx)
            if isinstance(outcome, Err):
                return PipelineFailure(
                    stage=stage.failure_code,
                    code=outcome.code,
                    message=outcome.message,
                    retryable=outcome.retryable,
                    image=ctx.assets.get(PublishStage.IMAGE),
                    details=outcome.details,
                )
            ctx.assets[stage] = outcome.data

        return PipelineSuccess(
            image=ctx.assets[PublishStage.IMAGE],
            metadata=ctx.assets[PublishStage.METADATA],
        )
