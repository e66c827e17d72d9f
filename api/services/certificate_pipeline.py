"""Certificate generation pipeline.

Runs template fetch -> composition -> optimization -> two-stage publish as one
sequential async chain. Every stage catches its own exceptions and turns them
into a PipelineFailure value; ``run`` never raises for an expected failure.

There are no retries in here. Callers that want them wrap the whole pipeline
with ``generate_with_retry``.
"""

import asyncio
import secrets
import string
import time
from datetime import UTC, date, datetime

from tenacity import (
    AsyncRetrying,
    retry_if_result,
    stop_after_attempt,
    wait_exponential_jitter,
)

from core.config import Settings, get_settings
from core.logger import get_logger
from core.wide_event import (
    set_wide_event_fields,
    set_wide_event_nested,
    timed_stage,
)
from rendering.compositor import CompositionError, FontSet, RasterArtifact, compose
from rendering.layout import NameTooLongError
from rendering.optimizer import OptimizeError, optimize
from rendering.qr import QrEncodeError
from schemas import (
    CertificateGenerationRequest,
    CertificateRequest,
    ErrorCode,
    PipelineFailure,
    PipelineResult,
    PipelineSuccess,
    SignedUrlRefreshResponse,
)
from services.publisher import Publisher
from services.storage_client import StorageClient, get_storage_client
from services.template_service import (
    TemplateFetchError,
    TemplateSource,
    get_template_source,
)

logger = get_logger(__name__)

DEFAULT_INSTRUCTOR_NAME = "EduVerse Platform"

_ID_ALPHABET = string.ascii_lowercase + string.digits


class _StageFailed(Exception):
    """Carries a failure value out of a stage helper."""

    def __init__(self, failure: PipelineFailure):
        super().__init__(failure.message)
        self.failure = failure


def _failure(
    stage: ErrorCode,
    message: str,
    *,
    retryable: bool = False,
    code: str | None = None,
    details: dict | None = None,
) -> PipelineFailure:
    return PipelineFailure(
        stage=stage,
        code=code or stage.value,
        message=message,
        retryable=retryable,
        details=details,
    )


class CertificatePipeline:
    """Generates and publishes one certificate per ``run`` call.

    Collaborators are injected; ``get_certificate_pipeline`` wires the
    production ones.
    """

    def __init__(
        self,
        template_source: TemplateSource,
        storage: StorageClient,
        settings: Settings | None = None,
        fonts: FontSet | None = None,
    ):
        self._settings = settings or get_settings()
        self._template_source = template_source
        self._fonts = fonts or FontSet(
            serif_bold=self._settings.serif_bold_font_path,
            sans=self._settings.sans_font_path,
            sans_bold=self._settings.sans_bold_font_path,
        )
        self._publisher = Publisher(storage, self._settings.signed_url_expiry_seconds)

    async def _fetch_template(self) -> bytes:
        try:
            return await self._template_source.get(self._settings.template_url)
        except TemplateFetchError as e:
            raise _StageFailed(
                _failure(
                    ErrorCode.TEMPLATE_FETCH_FAILED, str(e), retryable=e.retryable
                )
            ) from e

    async def _compose(
        self, template: bytes, request: CertificateRequest
    ) -> RasterArtifact:
        try:
            return await asyncio.to_thread(
                compose,
                template,
                request,
                fonts=self._fonts,
                qr_base_url=self._settings.qr_base_url,
                min_name_font_size=self._settings.min_name_font_size,
            )
        except NameTooLongError as e:
            raise _StageFailed(
                _failure(
                    ErrorCode.VALIDATION_ERROR,
                    str(e),
                    details={
                        "field": "studentName",
                        "fontSize": e.font_size,
                        "minFontSize": e.min_font_size,
                    },
                )
            ) from e
        except QrEncodeError as e:
            raise _StageFailed(_failure(ErrorCode.QR_ENCODE_FAILED, str(e))) from e
        except CompositionError as e:
            raise _StageFailed(
                _failure(
                    ErrorCode.COMPOSITION_FAILED,
                    str(e),
                    details={"stage": e.stage.value},
                )
            ) from e

    async def _optimize(self, raster: RasterArtifact) -> RasterArtifact:
        try:
            return await asyncio.to_thread(optimize, raster)
        except OptimizeError as e:
            raise _StageFailed(_failure(ErrorCode.OPTIMIZE_FAILED, str(e))) from e

    async def run(self, request: CertificateRequest) -> PipelineResult:
        set_wide_event_fields(
            certificate_id=request.certificate_id, course_id=request.course_id
        )
        start = time.perf_counter()

        try:
            with timed_stage("pipeline", "template_fetch"):
                template = await self._fetch_template()
            with timed_stage("pipeline", "compose"):
                raster = await self._compose(template, request)
            with timed_stage("pipeline", "optimize"):
                optimized = await self._optimize(raster)
            set_wide_event_nested(
                "raster",
                raw_bytes=raster.size_bytes,
                optimized_bytes=optimized.size_bytes,
            )
            result = await self._publisher.publish(optimized, request)
        except _StageFailed as e:
            result = e.failure
        except Exception as e:
            logger.exception(
                "certificate.pipeline.unexpected_error",
                certificate_id=request.certificate_id,
            )
            result = _failure(
                ErrorCode.CERTIFICATE_GENERATION_FAILED,
                str(e) or type(e).__name__,
            )

        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        if isinstance(result, PipelineSuccess):
            set_wide_event_nested(
                "pipeline",
                outcome="success",
                duration_ms=duration_ms,
                image_cid=result.image.content_id,
                metadata_cid=result.metadata.content_id,
            )
            logger.info(
                "certificate.generated",
                certificate_id=request.certificate_id,
                image_cid=result.image.content_id,
                metadata_cid=result.metadata.content_id,
                duration_ms=duration_ms,
            )
        else:
            set_wide_event_nested(
                "pipeline",
                outcome="failure",
                duration_ms=duration_ms,
                error_code=result.stage.value,
                reason=result.code,
                retryable=result.retryable,
            )
            logger.warning(
                "certificate.generation_failed",
                certificate_id=request.certificate_id,
                stage=result.stage.value,
                reason=result.code,
                retryable=result.retryable,
                image_cid=result.image.content_id if result.image else None,
            )
        return result


def get_certificate_pipeline() -> CertificatePipeline:
    return CertificatePipeline(get_template_source(), get_storage_client())


def _is_retryable_failure(result: PipelineResult) -> bool:
    return isinstance(result, PipelineFailure) and result.retryable


async def generate_with_retry(
    pipeline: CertificatePipeline,
    request: CertificateRequest,
    attempts: int = 3,
    max_wait: float = 8.0,
) -> PipelineResult:
    """Re-run the whole pipeline while it fails with a retryable failure.

    Identical inputs produce identical bytes, so a re-run re-uses any blob a
    previous attempt already committed. Returns the last result.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential_jitter(multiplier=0.5, max=max_wait),
        retry=retry_if_result(_is_retryable_failure),
        retry_error_callback=lambda state: state.outcome.result(),
        before_sleep=lambda state: logger.info(
            "certificate.pipeline.retrying",
            certificate_id=request.certificate_id,
            attempt=state.attempt_number,
        ),
    )
    return await retrying(pipeline.run, request)


def generate_certificate_id(course_id: str, now: datetime | None = None) -> str:
    """``cert-{courseId}-{epoch ms}-{7 random base36 chars}``."""
    now = now or datetime.now(UTC)
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(7))
    return f"cert-{course_id}-{int(now.timestamp() * 1000)}-{suffix}"


def build_certificate_request(
    body: CertificateGenerationRequest, today: date | None = None
) -> CertificateRequest:
    """Fill in optional request fields with their defaults.

    Raises:
        pydantic.ValidationError: If the completed request is invalid.
    """
    course_id = str(body.course_id)
    return CertificateRequest(
        student_name=body.student_name,
        course_name=body.course_name,
        course_id=course_id,
        completion_date=body.completion_date
        or (today or datetime.now(UTC).date()).isoformat(),
        instructor_name=body.instructor_name or DEFAULT_INSTRUCTOR_NAME,
        certificate_id=body.certificate_id or generate_certificate_id(course_id),
        wallet_address=body.wallet_address or "",
    )


async def refresh_signed_url(
    storage: StorageClient, cid: str, expiry_seconds: int
) -> SignedUrlRefreshResponse:
    """Issue a fresh signed URL for an already-published CID.

    Storage errors propagate to the caller.
    """
    signed = await storage.create_signed_url(cid, expiry_seconds)
    logger.info("certificate.signed_url.refreshed", cid=cid, expiry=expiry_seconds)
    return SignedUrlRefreshResponse(signed_url=signed.url, expires_at=signed.expires_at)
